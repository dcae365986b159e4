"""
IMAP Authentication

Builds connection configs and acquires OAuth2 tokens for Microsoft and Google IMAP.

Notes:
- Microsoft OAuth2 requires the `msal` package and uses device code flow. The tenant
  is auto-discovered from the email domain.
- Google OAuth2 requires the `google-auth-oauthlib` package and uses an installed-app flow
  (opens a browser and listens on a local HTTP redirect).
- Provider is auto-detected from the IMAP host string.
- Apps and credentials are cached in memory so a reconnect refreshes silently.
"""

import http.client
import json
import os
import re
import ssl
import sys
import urllib.parse

MICROSOFT_SCOPES = ["https://outlook.office365.com/IMAP.AccessAsUser.All"]
GOOGLE_SCOPES = ["https://mail.google.com/"]

_msal_app_cache = {}  # (client_id, tenant_id) -> PublicClientApplication
_tenant_cache = {}  # domain -> tenant_id
_google_creds_cache = {}  # (client_id, client_secret) -> credentials


def detect_oauth2_provider(host):
    """
    Detects the OAuth2 provider from the IMAP host.
    Returns "microsoft", "google", or None if unrecognized.
    """
    host_lower = (host or "").lower()
    if "outlook" in host_lower or "office365" in host_lower or "microsoft" in host_lower:
        return "microsoft"
    if "gmail" in host_lower or "google" in host_lower:
        return "google"
    return None


def _fetch_json_https(host, path, timeout=10):
    if not host or any(ch in host for ch in "\r\n"):
        raise ValueError("Invalid host")
    if not path.startswith("/"):
        path = f"/{path}"

    context = ssl.create_default_context()
    conn = http.client.HTTPSConnection(host, timeout=timeout, context=context)
    try:
        conn.request("GET", path, headers={"Accept": "application/json"})
        response = conn.getresponse()
        body = response.read()
    finally:
        conn.close()

    if response.status != 200:
        raise RuntimeError(f"Unexpected HTTP status {response.status}")
    return json.loads(body.decode("utf-8"))


def discover_microsoft_tenant(email):
    """
    Returns the Microsoft tenant ID for the email's domain, or None.
    Uses the OpenID Connect discovery endpoint (no authentication required).
    """
    domain = email.split("@")[-1].strip().lower()
    if not domain:
        print("Error: Could not discover Microsoft tenant: missing email domain")
        return None
    if domain in _tenant_cache:
        return _tenant_cache[domain]

    path = f"/{urllib.parse.quote(domain, safe='.-')}/.well-known/openid-configuration"
    discovery_host = os.getenv("OAUTH2_MICROSOFT_DISCOVERY_HOST") or "login.microsoftonline.com"
    try:
        data = _fetch_json_https(discovery_host, path)
    except (OSError, http.client.HTTPException, RuntimeError, ValueError) as e:
        print(f"Error: Could not discover Microsoft tenant for domain '{domain}': {e}")
        return None

    issuer = data.get("issuer", "")
    match = re.search(r"/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})", issuer)
    if not match:
        print(f"Error: Could not extract tenant ID from issuer: {issuer}")
        return None

    _tenant_cache[domain] = match.group(1)
    return match.group(1)


def acquire_microsoft_token(client_id, email):
    """Device code flow via MSAL; silent refresh when the app already holds an account."""
    tenant_id = discover_microsoft_tenant(email)
    if not tenant_id:
        return None

    try:
        import msal
    except ImportError:
        print("Error: 'msal' package is required for Microsoft OAuth2. Install it with: pip install msal")
        sys.exit(1)

    cache_key = (client_id, tenant_id)
    app = _msal_app_cache.get(cache_key)
    if app is None:
        print(f"Discovered Microsoft tenant: {tenant_id}")
        app = msal.PublicClientApplication(client_id, authority=f"https://login.microsoftonline.com/{tenant_id}")
        _msal_app_cache[cache_key] = app

    accounts = app.get_accounts()
    if accounts:
        result = app.acquire_token_silent(MICROSOFT_SCOPES, account=accounts[0])
        if result and "access_token" in result:
            return result["access_token"]

    flow = app.initiate_device_flow(scopes=MICROSOFT_SCOPES)
    if "user_code" not in flow:
        print(f"Error: Could not initiate device flow: {flow.get('error_description', 'Unknown error')}")
        return None

    print(flow["message"])
    result = app.acquire_token_by_device_flow(flow)
    if "access_token" in result:
        return result["access_token"]

    print(f"Error: Could not acquire token: {result.get('error_description', 'Unknown error')}")
    return None


def acquire_google_token(client_id, client_secret):
    """Installed app flow; cached credentials are refreshed without a browser."""
    cache_key = (client_id, client_secret)
    creds = _google_creds_cache.get(cache_key)
    if creds is not None and creds.refresh_token:
        try:
            import google.auth.transport.requests

            creds.refresh(google.auth.transport.requests.Request())
            if creds.token:
                return creds.token
        except Exception as e:
            print(f"Warning: Google token refresh failed, re-running consent flow: {e}")

    try:
        from google_auth_oauthlib.flow import InstalledAppFlow
    except ImportError:
        print("Error: 'google-auth-oauthlib' package is required for Google OAuth2.")
        print("Install it with: pip install google-auth-oauthlib")
        sys.exit(1)

    client_config = {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }
    flow = InstalledAppFlow.from_client_config(client_config, scopes=GOOGLE_SCOPES)

    print("Opening browser for Google authentication...")
    credentials = flow.run_local_server(port=0)
    if credentials and credentials.token:
        _google_creds_cache[cache_key] = credentials
        return credentials.token

    print("Error: Could not acquire Google OAuth2 token.")
    return None


def acquire_token_for_provider(provider, client_id, email, client_secret=None):
    if provider == "microsoft":
        return acquire_microsoft_token(client_id, email)
    if provider == "google":
        if not client_secret:
            print("Error: OAuth2 client secret is required for Google. Set --oauth2-client-secret or OAUTH2_CLIENT_SECRET.")
            return None
        return acquire_google_token(client_id, client_secret)
    print(f"Error: Unknown OAuth2 provider: {provider}")
    return None


def build_imap_conf(host, user, password, client_id=None, client_secret=None, port=None):
    """
    Build a connection config dict.

    If client_id is provided, acquires an OAuth2 token first (sys.exit(1) on failure).

    Returns:
        Dict with keys: host, port, user, password, oauth2_token, oauth2
    """
    oauth2_token = None
    oauth2_info = None

    if client_id:
        provider = detect_oauth2_provider(host)
        if not provider:
            print(f"Error: Could not detect OAuth2 provider from host '{host}'.")
            sys.exit(1)
        print(f"Acquiring OAuth2 token ({provider})...")
        oauth2_token = acquire_token_for_provider(provider, client_id, user, client_secret)
        if not oauth2_token:
            print("Error: Failed to acquire OAuth2 token.")
            sys.exit(1)
        oauth2_info = {"provider": provider, "client_id": client_id, "email": user, "client_secret": client_secret}

    return {
        "host": host,
        "port": port,
        "user": user,
        "password": password,
        "oauth2_token": oauth2_token,
        "oauth2": oauth2_info,
    }


def refresh_credentials(conf):
    """
    Re-acquire the OAuth2 token held by conf (no-op for password auth).
    The provider libraries only hit the network when the cached token needs refreshing.
    Returns the token in effect afterwards.
    """
    oauth2 = conf.get("oauth2")
    if not oauth2:
        return None
    new_token = acquire_token_for_provider(
        oauth2["provider"], oauth2["client_id"], oauth2["email"], oauth2.get("client_secret")
    )
    if new_token:
        conf["oauth2_token"] = new_token
    return conf.get("oauth2_token")


def auth_description(conf):
    """Human-readable auth method for configuration summaries."""
    oauth2 = conf.get("oauth2")
    if oauth2:
        return f"OAuth2/{oauth2['provider']} (XOAUTH2)"
    return "Basic (password)"
