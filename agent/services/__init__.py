# Modules are imported directly (services.supabase_service, services.graph_client, ...).
