"""
API Gateway.

FastAPI surface for job submission, status polling, progress streaming and
provider webhooks.
"""
