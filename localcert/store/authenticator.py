"""Store authentication: credential initialization and interactive login."""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..crypto.token import KeySlot
from ..errors import AuthenticationError


logger = logging.getLogger(__name__)


# Returns the entered password, or None when the user declines
PasswordPrompt = Callable[[str], Optional[str]]


class StoreAuthenticator(ABC):
    """Unlocks a key slot before certificate work is dispatched."""

    @abstractmethod
    def needs_credential_init(self, slot: KeySlot) -> bool:
        """True if the slot never had a credential set."""

    @abstractmethod
    def init_empty_credential(self, slot: KeySlot):
        """Set an empty credential on a fresh slot."""

    @abstractmethod
    def needs_login(self, slot: KeySlot) -> bool:
        """True if the slot is protected by a credential."""

    @abstractmethod
    def is_logged_in(self, slot: KeySlot) -> bool:
        """True if the slot is currently unlocked."""

    @abstractmethod
    def prompt_login(self, slot: KeySlot):
        """
        Run the interactive unlock flow.

        Raises:
            AuthenticationError: Unlock failed or was declined
        """


class TokenAuthenticator(StoreAuthenticator):
    """Authenticator for SoftwareToken slots with a pluggable prompt."""

    def __init__(self, prompt: Optional[PasswordPrompt] = None, max_attempts: int = 3):
        """
        Initialize authenticator.

        Args:
            prompt: Password prompt (non-interactive if None)
            max_attempts: Wrong passwords accepted before giving up
        """
        self.prompt = prompt
        self.max_attempts = max_attempts

    def needs_credential_init(self, slot: KeySlot) -> bool:
        return slot.token.needs_user_init()

    def init_empty_credential(self, slot: KeySlot):
        slot.token.init_pin("")

    def needs_login(self, slot: KeySlot) -> bool:
        return slot.token.needs_login()

    def is_logged_in(self, slot: KeySlot) -> bool:
        return slot.token.is_logged_in()

    def prompt_login(self, slot: KeySlot):
        if self.prompt is None:
            raise AuthenticationError(f"Key slot '{slot.name}' is locked and no password prompt is available")

        for attempt in range(1, self.max_attempts + 1):
            password = self.prompt(f"Password for key slot '{slot.name}'")
            if password is None:
                logger.info("Key slot unlock declined")
                raise AuthenticationError("Key slot unlock declined")
            try:
                slot.token.login(password)
                return
            except AuthenticationError:
                logger.warning(f"Key slot unlock failed (attempt {attempt}/{self.max_attempts})")

        raise AuthenticationError(f"Key slot unlock failed after {self.max_attempts} attempts")
