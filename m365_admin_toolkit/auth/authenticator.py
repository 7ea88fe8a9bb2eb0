"""
Authentication module: certificate, client-secret and device-code auth.
Uses MSAL for token acquisition against the Microsoft identity platform.
One token is acquired per API surface and reused until it is about to
expire, or until an API rejects it and a refresh is forced.
"""

from __future__ import annotations

import base64
import getpass
import logging
import time
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, ApiSurface, GRAPH
from ..models import TenantContext

logger = logging.getLogger("m365_admin_toolkit.auth")

AUTHORITY_BASE = "https://login.microsoftonline.com"

# Device-flow errors that mean the operator backed out
CANCEL_ERRORS = {"authorization_declined", "access_denied"}

# Cached tokens are renewed this many seconds before they expire
TOKEN_REFRESH_MARGIN = 300
DEFAULT_TOKEN_LIFETIME = 3600


class AuthenticationError(Exception):
    """Raised when a credential or session cannot be established."""
    pass


class AuthCancelled(AuthenticationError):
    """Raised when the operator declines or interrupts sign-in."""
    pass


def load_pfx_credential(cert_path: str, password: str) -> dict:
    """Read a base64-encoded PFX and return an MSAL client_credential dict."""
    try:
        with open(cert_path, "r") as f:
            cert_base64 = f.read().strip()
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")

    try:
        cert_bytes = base64.b64decode(cert_base64)
        password_bytes = password.encode("utf-8") if password else None
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )
    except Exception as e:
        raise AuthenticationError(f"Failed to load certificate: {e}") from e

    if private_key is None or certificate is None:
        raise AuthenticationError("PFX does not contain both a key and a certificate.")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    return {"thumbprint": thumbprint, "private_key": private_key_pem}


def _checked(result: dict, label: str) -> dict:
    if "access_token" in result:
        return result
    code = result.get("error", "")
    error = result.get("error_description", code or "Unknown")
    if code in CANCEL_ERRORS:
        raise AuthCancelled(f"{label} cancelled by user: {error}")
    raise AuthenticationError(f"{label} failed: {error}")


class Authenticator:
    """
    Handles MSAL-based authentication.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication
      - Delegated authentication (device code flow)
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._tokens: dict[str, tuple[str, float]] = {}   # scope -> (token, renew_at)
        self._app = None
        self._account = None
        self.principal: str = ""

    async def acquire_token(self, surface: ApiSurface = GRAPH, force_refresh: bool = False) -> str:
        """
        Acquire (or reuse) an access token for the given surface.
        force_refresh bypasses both our cache and MSAL's, for a token the
        API has already rejected.
        """
        cached = self._tokens.get(surface.scope)
        if cached and not force_refresh and time.monotonic() < cached[1]:
            return cached[0]
        if force_refresh:
            logger.info(f"Forcing a new access token ({surface.name})...")

        if self.config.mode == "certificate":
            result = self._acquire_certificate_token(surface, force_refresh)
        elif self.config.mode == "secret":
            result = self._acquire_secret_token(surface, force_refresh)
        elif self.config.mode == "delegated":
            result = self._acquire_delegated_token(surface, force_refresh)
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

        lifetime = int(result.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        renew_at = time.monotonic() + max(0, lifetime - TOKEN_REFRESH_MARGIN)
        self._tokens[surface.scope] = (result["access_token"], renew_at)
        return result["access_token"]

    def _confidential_app(self, tenant_id: str, client_id: str, credential) -> msal.ConfidentialClientApplication:
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                client_id=client_id,
                authority=f"{AUTHORITY_BASE}/{tenant_id}",
                client_credential=credential,
            )
        return self._app

    def _client_credentials(self, app: msal.ConfidentialClientApplication,
                            surface: ApiSurface, force_refresh: bool) -> dict:
        if force_refresh:
            # MSAL serves app tokens from its own cache until they expire
            app.remove_tokens_for_client()
        return app.acquire_token_for_client(scopes=[surface.scope])

    def _acquire_certificate_token(self, surface: ApiSurface, force_refresh: bool = False) -> dict:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        if self._app is None:
            logger.info("Authenticating with certificate-based app credentials...")
            password = cert_config.certificate_password
            if not password:
                try:
                    password = getpass.getpass("Enter the certificate password: ")
                except (KeyboardInterrupt, EOFError):
                    raise AuthCancelled("Certificate password prompt cancelled.")
            credential = load_pfx_credential(cert_config.certificate_path, password)
        else:
            credential = None

        app = self._confidential_app(cert_config.tenant_id, cert_config.client_id, credential)
        result = _checked(self._client_credentials(app, surface, force_refresh), "Certificate auth")
        self.principal = f"app:{cert_config.client_id}"
        logger.info(f"Certificate authentication successful ({surface.name}).")
        return result

    def _acquire_secret_token(self, surface: ApiSurface, force_refresh: bool = False) -> dict:
        """Acquire token using a client secret."""
        secret_config = self.config.secret
        if not secret_config or not secret_config.client_secret:
            raise AuthenticationError("Client secret auth config not provided.")

        app = self._confidential_app(
            secret_config.tenant_id, secret_config.client_id, secret_config.client_secret
        )
        result = _checked(self._client_credentials(app, surface, force_refresh), "Client secret auth")
        self.principal = f"app:{secret_config.client_id}"
        logger.info(f"Client secret authentication successful ({surface.name}).")
        return result

    def _acquire_delegated_token(self, surface: ApiSurface, force_refresh: bool = False) -> dict:
        """Acquire token using delegated (device code) flow."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=f"{AUTHORITY_BASE}/{deleg_config.tenant_id}",
            )
        app = self._app
        scopes = [surface.scope]

        # Other surfaces and renewals are served silently via the refresh token
        if self._account is not None:
            result = app.acquire_token_silent(
                scopes, account=self._account, force_refresh=force_refresh
            )
            if result and "access_token" in result:
                return result
            logger.info("Silent token renewal failed; signing in again.")

        logger.info("Initiating device code authentication flow...")
        flow = app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        try:
            result = app.acquire_token_by_device_flow(flow)
        except KeyboardInterrupt:
            raise AuthCancelled("Device code sign-in interrupted.")

        result = _checked(result, "Delegated auth")
        claims = result.get("id_token_claims") or {}
        self.principal = claims.get("preferred_username", "") or "delegated-user"
        accounts = app.get_accounts()
        self._account = accounts[0] if accounts else None
        logger.info(f"Delegated authentication successful ({surface.name}).")
        return result

    def tenant_context(self) -> TenantContext:
        """Describe the authenticated session for reports."""
        return TenantContext(
            tenant_id=self.config.tenant_id,
            principal=self.principal,
            auth_mode=self.config.mode,
            surfaces=sorted(self._tokens),
        )

    def disconnect(self) -> None:
        """Drop cached tokens at the end of the run."""
        self._tokens.clear()
        self._account = None
        self._app = None
        logger.info("Disconnected; cached tokens discarded.")
