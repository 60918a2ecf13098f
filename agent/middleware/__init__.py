from .auth import api_key_middleware, is_public, PUBLIC_PATHS, PUBLIC_PREFIXES
