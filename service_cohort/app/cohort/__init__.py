"""
Cohort package: assembles eligible subjects into a pseudonymized Group.
"""
