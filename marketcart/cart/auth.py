"""
Auth Gate - ties the cart's lifetime to the session's.

States:
    LOADING          session not resolved yet; the cart is left alone
    UNAUTHENTICATED  cart wiped from memory and storage, no confirmation asked
    AUTHENTICATED    cart loaded from storage (expired items dropped)

A token refresh (same user, still authenticated) has no cart side effects.
"""
from enum import Enum
from typing import Any, Callable, Optional

from marketcart.db import get_supabase
from marketcart.logging import get_logger, sanitize_id_for_logging
from .service import CartStore
from .sync import CrossTabSynchronizer

logger = get_logger(__name__)


class AuthState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthGate:
    """Drives a CartStore (and its synchronizer) from session transitions."""

    def __init__(
        self,
        store: CartStore,
        synchronizer: Optional[CrossTabSynchronizer] = None,
        migrate: Optional[Callable[[], Any]] = None,
    ):
        self.store = store
        self.synchronizer = synchronizer
        self._migrate = migrate
        self._migrated = False
        self.state = AuthState.LOADING
        self.user_id: Optional[str] = None

    def begin_loading(self) -> None:
        """Session is being resolved; defer every cart operation."""
        logger.debug("Auth still loading, waiting...")
        self.state = AuthState.LOADING

    def sign_in(self, user_id: str) -> None:
        if self.state == AuthState.AUTHENTICATED and user_id == self.user_id:
            return

        self.state = AuthState.AUTHENTICATED
        self.user_id = user_id

        if not self._migrated and self._migrate is not None:
            try:
                self._migrate()
            except Exception:
                logger.exception("Cart migration failed")
            self._migrated = True

        logger.info(f"Session active for user {sanitize_id_for_logging(user_id)}")
        self.store.start_session(user_id)
        if self.synchronizer is not None:
            self.synchronizer.start()

    def sign_out(self) -> None:
        self.state = AuthState.UNAUTHENTICATED
        self.user_id = None
        if self.synchronizer is not None:
            self.synchronizer.stop()
        self.store.end_session()

    def apply(self, state: AuthState, user_id: Optional[str] = None) -> None:
        """Generic transition entry point."""
        if state == AuthState.LOADING:
            self.begin_loading()
        elif state == AuthState.AUTHENTICATED and user_id:
            self.sign_in(user_id)
        else:
            self.sign_out()


class SupabaseAuthBridge:
    """
    Feeds Supabase auth state changes into an AuthGate.

    Usage:
        bridge = SupabaseAuthBridge(gate)
        bridge.start()
        ...
        bridge.stop()
    """

    SIGNED_OUT = "SIGNED_OUT"

    def __init__(self, gate: AuthGate, client=None):
        self.gate = gate
        self._client = client
        self._subscription = None

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.client.auth.on_auth_state_change(self.handle_event)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def handle_event(self, event: str, session) -> None:
        """Map a Supabase auth event (INITIAL_SESSION, SIGNED_IN, TOKEN_REFRESHED, ...) to the gate."""
        user = getattr(session, "user", None) if session is not None else None
        if event == self.SIGNED_OUT or user is None:
            self.gate.sign_out()
            return
        self.gate.sign_in(str(user.id))
