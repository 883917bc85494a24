"""
Asset Compute integration descriptors and their loaders.

An integration describes the Adobe technical account used to authenticate
against Asset Compute. Two shapes are supported:

- JWT (service account) integrations:
  `{metascopes, technicalAccount: {id, org, clientId, clientSecret, privateKey}}`
- OAuth Server-to-Server integrations:
  `{TYPE: "oauthservertoserver", ORG_ID, CLIENT_ID, CLIENT_SECRETS[], SCOPES[],
  TECHNICAL_ACCOUNT_ID, TECHNICAL_ACCOUNT_EMAIL}`

Files are located through an explicit `IntegrationSource` value object, so
loading several integrations concurrently never shares state.

Example:
    >>> source = IntegrationSource(integration_file="integration.yaml")
    >>> integration = load_integration(source)
    >>> client = AssetComputeClient.create(integration)
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from assetcompute._errors import AssetComputeError

logger = logging.getLogger(__name__)

OAUTH_SERVER_TO_SERVER_TYPE = "oauthservertoserver"

INTEGRATION_FILE_PATH_ENV = "ASSET_COMPUTE_INTEGRATION_FILE_PATH"
PRIVATE_KEY_FILE_PATH_ENV = "ASSET_COMPUTE_PRIVATE_KEY_FILE_PATH"


class IntegrationError(AssetComputeError):
    """Raised when an integration descriptor is missing, unreadable or incomplete."""

    pass


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TechnicalAccount:
    """
    Technical account of a JWT integration.

    Attributes:
        id: Technical account id, such as "12345667EDBA435@techacct.adobe.com".
        org: Organization id, such as "8765432DEAB65@AdobeOrg".
        client_id: Client id (API key) of the technical account.
        client_secret: Client secret of the technical account.
        private_key: PEM encoded private key used to sign the JWT.
    """

    id: str
    org: str
    client_id: str
    client_secret: str
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class JwtIntegration:
    """
    JWT (service account) integration.

    Attributes:
        metascopes: Metascopes associated with the integration.
        technical_account: The technical account credentials.
        ims_endpoint: Optional IMS host overriding the configured one.
    """

    metascopes: tuple[str, ...]
    technical_account: TechnicalAccount
    ims_endpoint: str | None = None

    @property
    def org(self) -> str:
        return self.technical_account.org

    @property
    def client_id(self) -> str:
        return self.technical_account.client_id


@dataclass(frozen=True)
class OAuthServerToServerIntegration:
    """
    OAuth Server-to-Server integration.

    Attributes:
        org_id: Organization id, such as "8765432DEAB65@AdobeOrg".
        client_id: Client id (API key) of the technical account.
        client_secrets: Candidate client secrets, tried in order.
        scopes: Scopes associated with the integration.
        technical_account_id: Id of the technical account.
        technical_account_email: Email of the technical account.
        ims_endpoint: Optional IMS host overriding the configured one.
    """

    org_id: str
    client_id: str
    client_secrets: tuple[str, ...] = field(repr=False)
    scopes: tuple[str, ...]
    technical_account_id: str
    technical_account_email: str
    ims_endpoint: str | None = None

    TYPE = OAUTH_SERVER_TO_SERVER_TYPE

    @property
    def org(self) -> str:
        return self.org_id


Integration = JwtIntegration | OAuthServerToServerIntegration


# =============================================================================
# Validation
# =============================================================================


def is_oauth_server_to_server_integration(data: Any) -> bool:
    """Checks whether a descriptor declares itself as an OAuth Server-to-Server integration."""
    if isinstance(data, OAuthServerToServerIntegration):
        return True
    return isinstance(data, Mapping) and data.get("TYPE") == OAUTH_SERVER_TO_SERVER_TYPE


def _non_empty_str_list(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) > 0
        and all(isinstance(item, str) and item for item in value)
    )


def _parse_oauth_server_to_server(data: Mapping[str, Any]) -> OAuthServerToServerIntegration:
    valid = (
        isinstance(data.get("ORG_ID"), str)
        and _non_empty_str_list(data.get("CLIENT_SECRETS"))
        and isinstance(data.get("CLIENT_ID"), str)
        and _non_empty_str_list(data.get("SCOPES"))
        and isinstance(data.get("TECHNICAL_ACCOUNT_ID"), str)
        and isinstance(data.get("TECHNICAL_ACCOUNT_EMAIL"), str)
    )
    if not valid:
        raise IntegrationError("Asset Compute OAuth Server-to-server integration details are required")

    return OAuthServerToServerIntegration(
        org_id=data["ORG_ID"],
        client_id=data["CLIENT_ID"],
        client_secrets=tuple(data["CLIENT_SECRETS"]),
        scopes=tuple(data["SCOPES"]),
        technical_account_id=data["TECHNICAL_ACCOUNT_ID"],
        technical_account_email=data["TECHNICAL_ACCOUNT_EMAIL"],
        ims_endpoint=data.get("IMS_ENDPOINT") or data.get("imsEndpoint"),
    )


def _parse_jwt(data: Mapping[str, Any]) -> JwtIntegration:
    metascopes = data.get("metascopes")
    account = data.get("technicalAccount")
    if not metascopes or not isinstance(account, Mapping) or not account:
        raise IntegrationError("Asset Compute integration details are required")

    private_key = account.get("privateKey")
    if not private_key and account.get("privateKeyFile"):
        private_key = _read_private_key(account["privateKeyFile"])

    required = ("id", "org", "clientId", "clientSecret")
    missing = [name for name in required if not account.get(name)]
    if not private_key:
        missing.append("privateKey")
    if missing:
        raise IntegrationError(
            f"Not all integration configuration properties are present (missing: {', '.join(missing)})"
        )

    return JwtIntegration(
        metascopes=tuple(metascopes) if not isinstance(metascopes, str) else (metascopes,),
        technical_account=TechnicalAccount(
            id=account["id"],
            org=account["org"],
            client_id=account["clientId"],
            client_secret=account["clientSecret"],
            private_key=private_key,
        ),
        ims_endpoint=data.get("imsEndpoint"),
    )


def parse_integration(data: Mapping[str, Any] | Integration | None) -> Integration:
    """
    Validates an integration descriptor and converts it to its dataclass.

    Args:
        data: A mapping in one of the two supported shapes, or an already built integration.

    Returns:
        A JwtIntegration or an OAuthServerToServerIntegration.

    Raises:
        IntegrationError: If the descriptor is missing or incomplete.
    """
    if isinstance(data, (JwtIntegration, OAuthServerToServerIntegration)):
        return data
    if not isinstance(data, Mapping):
        raise IntegrationError("Asset Compute integration details are required")
    if is_oauth_server_to_server_integration(data):
        return _parse_oauth_server_to_server(data)
    return _parse_jwt(data)


# =============================================================================
# Loading from files
# =============================================================================


@dataclass(frozen=True)
class IntegrationSource:
    """
    Where to read an integration from.

    Attributes:
        integration_file: YAML integration file, or an Adobe Developer Console JSON export.
        private_key_file: PEM private key, required for Developer Console JSON exports.
    """

    integration_file: Path | str | None = None
    private_key_file: Path | str | None = None

    @classmethod
    def from_env(cls) -> IntegrationSource:
        """Reads ASSET_COMPUTE_INTEGRATION_FILE_PATH and ASSET_COMPUTE_PRIVATE_KEY_FILE_PATH."""
        return cls(
            integration_file=os.environ.get(INTEGRATION_FILE_PATH_ENV) or None,
            private_key_file=os.environ.get(PRIVATE_KEY_FILE_PATH_ENV) or None,
        )

    def with_env_defaults(self) -> IntegrationSource:
        """Returns a copy where missing paths fall back to the environment variables."""
        env = IntegrationSource.from_env()
        return IntegrationSource(
            integration_file=self.integration_file or env.integration_file,
            private_key_file=self.private_key_file or env.private_key_file,
        )


def _read_private_key(private_key_file: Path | str | None) -> str:
    if not private_key_file or not Path(private_key_file).is_file():
        raise IntegrationError("Missing required files")
    return Path(private_key_file).read_text(encoding="utf-8")


def _map_console_export(export: Mapping[str, Any], private_key: str) -> dict[str, Any]:
    """Maps an Adobe Developer Console project export to the JWT integration shape."""
    try:
        project = export["project"]
        jwt_credentials = project["workspace"]["details"]["credentials"][0]["jwt"]
        return {
            "metascopes": jwt_credentials["meta_scopes"],
            "technicalAccount": {
                "id": jwt_credentials["technical_account_id"],
                "org": project["org"]["ims_org_id"],
                "clientId": jwt_credentials["client_id"],
                "clientSecret": jwt_credentials["client_secret"],
                "privateKey": private_key,
            },
        }
    except (KeyError, IndexError, TypeError) as e:
        raise IntegrationError(f"Invalid Developer Console export: missing {e}") from e


def load_integration(source: IntegrationSource | None = None) -> Integration:
    """
    Loads and validates an integration from disk.

    JSON files are parsed first: a Developer Console export (with a `project`
    key) is mapped to the JWT shape using the private key file, any other JSON
    object is used as-is. Files that are not JSON are parsed as YAML.

    Args:
        source: Paths to read; missing paths fall back to the environment variables.

    Returns:
        The validated integration.

    Raises:
        IntegrationError: If files are missing, unreadable or the integration is incomplete.
    """
    source = (source or IntegrationSource()).with_env_defaults()
    if not source.integration_file or not Path(source.integration_file).is_file():
        raise IntegrationError("Missing required files")

    integration_path = Path(source.integration_file)
    text = integration_path.read_text(encoding="utf-8")

    data: Any
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise IntegrationError(f"Unable to parse integration file ({integration_path.name}): {e}") from e
    else:
        if isinstance(data, Mapping) and "project" in data:
            data = _map_console_export(data, _read_private_key(source.private_key_file))

    logger.debug(f"Loaded integration file {integration_path.name}")
    return parse_integration(data)


def convert_integration(
    integration_file: Path | str,
    private_key_file: Path | str,
    output_file: Path | str = "integration.yaml",
) -> Path:
    """
    Converts a Developer Console JSON export into a YAML integration file.

    Args:
        integration_file: The Developer Console project export (JSON).
        private_key_file: The PEM private key of the technical account.
        output_file: Destination YAML file.

    Returns:
        The path of the written file.

    Raises:
        IntegrationError: If an input file is missing or malformed.
    """
    if not integration_file or not private_key_file:
        raise IntegrationError("Missing required files")
    if not Path(integration_file).is_file():
        raise IntegrationError("Missing required files")

    export = json.loads(Path(integration_file).read_text(encoding="utf-8"))
    data = _map_console_export(export, _read_private_key(private_key_file))

    output_path = Path(output_file)
    with output_path.open(mode="w", encoding="utf-8") as file:
        yaml.safe_dump(data, file, sort_keys=False, default_flow_style=False)
    return output_path
