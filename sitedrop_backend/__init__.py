"""Backend for sitedrop project workspaces.

This package intentionally keeps FastAPI route handlers thin:
- project id generation + workspace provisioning
- safe path handling for uploaded names and archive entries
- zip/tar extraction with Zip Slip and size protection
- per-request ingestion of uploaded files into one workspace

Security note:
Project ids are public (they appear in /p/ URLs). Never log them next to
secrets and never expose filesystem paths in responses.
"""
