"""WebAuthn ceremonies for passkey sign-in.

Challenges are stored per user and kind ("registration" / "authentication")
and consumed on verification, so each challenge can be answered once.
Credential ids and public keys are stored base64url-encoded.
"""

from __future__ import annotations

import json
from typing import Any

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from ..observability.logging import get_logger
from ..services import passkeys_repo
from ..settings import settings

log = get_logger("passkeys")

REGISTRATION = "registration"
AUTHENTICATION = "authentication"


class PasskeyError(ValueError):
    status_code = 400


class ChallengeMissing(PasskeyError):
    pass


class UnknownCredential(PasskeyError):
    pass


class NoCredentials(PasskeyError):
    status_code = 401


class VerificationFailed(PasskeyError):
    pass


def _transports(values: list[str] | None) -> list[AuthenticatorTransport] | None:
    out = []
    for v in values or []:
        try:
            out.append(AuthenticatorTransport(v))
        except ValueError:
            continue
    return out or None


def _descriptors(credentials: list[dict[str, Any]]) -> list[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(
            id=base64url_to_bytes(c["credentialId"]),
            transports=_transports(c.get("transports")),
        )
        for c in credentials
        if c.get("credentialId")
    ]


def start_registration(user: dict[str, Any]) -> dict[str, Any]:
    existing = passkeys_repo.list_credentials(user["id"])
    options = generate_registration_options(
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
        user_id=str(user["id"]).encode("utf-8"),
        user_name=str(user.get("email") or user["id"]),
        user_display_name=str(user.get("name") or user.get("email") or ""),
        exclude_credentials=_descriptors(existing),
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.REQUIRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
        attestation=AttestationConveyancePreference.NONE,
    )
    passkeys_repo.save_challenge(
        user_id=user["id"], kind=REGISTRATION, challenge=bytes_to_base64url(options.challenge)
    )
    return json.loads(options_to_json(options))


def finish_registration(*, user_id: str, attestation: dict[str, Any]) -> dict[str, Any]:
    challenge = passkeys_repo.consume_challenge(user_id=user_id, kind=REGISTRATION)
    if not challenge:
        raise ChallengeMissing("Registration challenge not found or expired")

    try:
        verified = verify_registration_response(
            credential=attestation,
            expected_challenge=base64url_to_bytes(challenge),
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.webauthn_origin,
        )
    except (InvalidRegistrationResponse, InvalidJSONStructure) as e:
        log.warning("passkey_registration_rejected", user_id=user_id, error=str(e)[:300])
        raise VerificationFailed("Passkey registration could not be verified") from e

    transports = ((attestation.get("response") or {}).get("transports")) or []
    device_type = getattr(verified.credential_device_type, "value", verified.credential_device_type)
    cred = passkeys_repo.save_credential(
        user_id=user_id,
        credential_id=bytes_to_base64url(verified.credential_id),
        public_key=bytes_to_base64url(verified.credential_public_key),
        sign_count=verified.sign_count,
        transports=[str(t) for t in transports],
        device_type=str(device_type) if device_type else None,
        backed_up=bool(verified.credential_backed_up),
    )
    log.info("passkey_registered", user_id=user_id, credential_id=cred["credentialId"])
    return cred


def start_authentication(user: dict[str, Any]) -> dict[str, Any]:
    credentials = passkeys_repo.list_credentials(user["id"])
    if not credentials:
        raise NoCredentials("No passkeys registered for this user")
    options = generate_authentication_options(
        rp_id=settings.webauthn_rp_id,
        allow_credentials=_descriptors(credentials),
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    passkeys_repo.save_challenge(
        user_id=user["id"], kind=AUTHENTICATION, challenge=bytes_to_base64url(options.challenge)
    )
    return json.loads(options_to_json(options))


def finish_authentication(*, user_id: str, assertion: dict[str, Any]) -> dict[str, Any]:
    credential_id = str(assertion.get("id") or assertion.get("rawId") or "").strip()
    credential = (
        passkeys_repo.get_credential(user_id=user_id, credential_id=credential_id) if credential_id else None
    )
    if not credential:
        raise UnknownCredential("Passkey not recognized")

    challenge = passkeys_repo.consume_challenge(user_id=user_id, kind=AUTHENTICATION)
    if not challenge:
        raise ChallengeMissing("Authentication challenge not found or expired")

    try:
        verified = verify_authentication_response(
            credential=assertion,
            expected_challenge=base64url_to_bytes(challenge),
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.webauthn_origin,
            credential_public_key=base64url_to_bytes(credential["publicKey"]),
            credential_current_sign_count=int(credential.get("signCount") or 0),
        )
    except (InvalidAuthenticationResponse, InvalidJSONStructure) as e:
        log.warning("passkey_authentication_rejected", user_id=user_id, error=str(e)[:300])
        raise VerificationFailed("Passkey could not be verified") from e

    passkeys_repo.update_sign_count(
        user_id=user_id, credential_id=credential_id, sign_count=verified.new_sign_count
    )
    log.info("passkey_authenticated", user_id=user_id, credential_id=credential_id)
    return credential
