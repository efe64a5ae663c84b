"""Resolution of the acting principal's object id."""
import logging
import time
from typing import Callable, Optional

import jwt
import requests
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential

from ..deploy.errors import IdentityNotFound
from ..deploy.models import PrincipalId

logger = logging.getLogger(__name__)

ARM_SCOPE = "https://management.azure.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_USERS_URL = "https://graph.microsoft.com/v1.0/users"


class IdentityResolver:
    """Finds the principal id to grant network permissions to.

    The fast path reads the `oid` claim from the session's own ARM token.
    When that is unavailable, an explicit identifier (UPN or mail) is looked
    up in Microsoft Graph. Directory writes are not immediately readable by
    ARM, so callers should `settle()` after a directory resolution.
    """

    def __init__(
        self,
        credential=None,
        settle_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        request_timeout: float = 30.0,
    ):
        self.credential = credential or DefaultAzureCredential()
        self.settle_seconds = settle_seconds
        self.session = session or requests.Session()
        self.sleep = sleep
        self.request_timeout = request_timeout

    def resolve_principal(self, explicit_identifier: Optional[str] = None) -> PrincipalId:
        """Resolve the acting principal.

        Args:
            explicit_identifier: UPN or mail to look up if the token has no oid.

        Returns:
            PrincipalId: Resolved object id and its source.

        Raises:
            IdentityNotFound: If neither path yields exactly one principal.
        """
        object_id = self._principal_from_token()
        if object_id:
            logger.info("Resolved principal %s from session token", object_id)
            return PrincipalId(object_id=object_id, source="token")

        if not explicit_identifier:
            raise IdentityNotFound("Session token carries no principal id and no identifier was given")

        object_id = self._principal_from_directory(explicit_identifier)
        logger.info("Resolved principal %s for %s from directory", object_id, explicit_identifier)
        return PrincipalId(object_id=object_id, source="directory")

    def settle(self, principal: PrincipalId) -> None:
        """Wait for directory replication after a directory resolution."""
        if principal.needs_settling and self.settle_seconds > 0:
            logger.info("Waiting %.0fs for directory replication", self.settle_seconds)
            self.sleep(self.settle_seconds)

    def _principal_from_token(self) -> Optional[str]:
        try:
            token = self.credential.get_token(ARM_SCOPE).token
            claims = jwt.decode(token, options={"verify_signature": False})
        except ClientAuthenticationError as e:
            logger.debug("No session token for fast path: %s", e)
            return None
        except jwt.PyJWTError as e:
            logger.debug("Session token is not a readable JWT: %s", e)
            return None
        return claims.get("oid")

    def _principal_from_directory(self, identifier: str) -> str:
        try:
            token = self.credential.get_token(GRAPH_SCOPE).token
        except ClientAuthenticationError as e:
            raise IdentityNotFound(f"Could not look up '{identifier}'", str(e))

        escaped = identifier.replace("'", "''")
        params = {
            "$filter": f"userPrincipalName eq '{escaped}' or mail eq '{escaped}'",
            "$select": "id,userPrincipalName",
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.get(
                GRAPH_USERS_URL, params=params, headers=headers, timeout=self.request_timeout
            )
            response.raise_for_status()
            matches = response.json().get("value", [])
        except requests.exceptions.RequestException as e:
            raise IdentityNotFound(f"Directory lookup for '{identifier}' failed", str(e))

        if len(matches) != 1:
            raise IdentityNotFound(
                f"Directory lookup for '{identifier}' returned {len(matches)} principals, expected 1"
            )
        return matches[0]["id"]
