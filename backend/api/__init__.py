# api/__init__.py
# ============================================================================
# CLUBSPHERE: HTTP API
# ============================================================================
# Routers are assembled by api.server.create_app
# ============================================================================
