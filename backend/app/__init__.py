"""
SSC Review Backend Application Package

This package contains the FastAPI backend for the scholarship screening
committee review workflow, including:

- main.py: FastAPI application and router wiring
- services/review_workflow.py: stage decisions and overall status
- services/reporting_projector.py: decision history and stage views
"""
