# Routers are imported from their modules directly (routes.webhook, routes.health, ...):
# services import routes.metrics, so this package must stay import-free.
