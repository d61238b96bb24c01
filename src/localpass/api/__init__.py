# Local API - FastAPI backend for the vault UI
#
# Serves on localhost only. Every vault route requires the per-process
# session token.
