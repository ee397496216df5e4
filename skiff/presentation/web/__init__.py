"""
Web presentation layer for Skiff deployments.

Architectural Intent:
- Exposes the deployment REST API and the live log stream
- Uses Python stdlib only (http.server + asyncio) -- no external web framework
- Complements the CLI and TUI, which consume this API as clients
"""
