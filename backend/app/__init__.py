"""Application package for the academic management backend.

This package exposes the service, repository and model modules used by
the FastAPI application: students and their login users, the academic
reference data they point at, and the soft-delete transaction that keeps
a student and its user in step.
"""
