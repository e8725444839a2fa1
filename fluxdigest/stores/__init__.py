from fluxdigest.stores.digest_store import DigestStore
from fluxdigest.stores.miniflux_config_store import MinifluxConfig, MinifluxConfigStore
from fluxdigest.stores.preference_store import PreferenceStore
from fluxdigest.stores.user_store import UserStore

__all__ = [
    "DigestStore",
    "MinifluxConfig",
    "MinifluxConfigStore",
    "PreferenceStore",
    "UserStore",
]
