import json
import secrets
from typing import Callable, Optional

import httpx
import pgpy
import pytest
from pgpy.constants import (
    CompressionAlgorithm,
    EllipticCurveOID,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

import sys, os
target_path = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))
if target_path not in sys.path:
    sys.path.insert(0, target_path)

from mailauth.auth_client import ClientConfig
from mailauth.models import AuthParameters, PasswordMode
from mailauth.srp_utils import (
    SRP_BIT_LENGTH,
    b64_decode,
    b64_encode,
    compute_key_password,
    expand_hash,
    hash_password,
    multiplier,
    scrambler,
)
from mailauth.srp_utils.bigint import GENERATOR, from_le_bytes, to_le_bytes


# RFC 3526 group 14: a 2048-bit safe prime
RFC3526_2048_HEX = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3DC2007CB8A163BF05"
    "98DA48361C55D39A69163FA8FD24CF5F83655D23DCA3AD961C62F356208552BB"
    "9ED529077096966D670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9DE2BCBF695581718"
    "3995497CEA956AE515D2261898FA051015728E5A8AACAA68FFFFFFFFFFFFFFFF"
)


# -----------------------------------------------------------------------------
# PGP helpers
# -----------------------------------------------------------------------------

def _new_signing_key(name: str) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.EdDSA, EllipticCurveOID.Ed25519)
    uid = pgpy.PGPUID.new(name, email=f"{name.lower().replace(' ', '.')}@mail.test")
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.Certify},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


def _clear_sign(key: pgpy.PGPKey, text: str) -> str:
    msg = pgpy.PGPMessage.new(text, cleartext=True)
    msg |= key.sign(msg)
    return str(msg)


@pytest.fixture(scope="session")
def modulus_bytes() -> bytes:
    return to_le_bytes(int(RFC3526_2048_HEX, 16), SRP_BIT_LENGTH)


@pytest.fixture(scope="session")
def modulus_signer() -> pgpy.PGPKey:
    return _new_signing_key("Modulus Signer")


@pytest.fixture(scope="session")
def modulus_key(modulus_signer) -> str:
    return str(modulus_signer.pubkey)


@pytest.fixture(scope="session")
def sign_modulus(modulus_signer) -> Callable[[str], str]:
    def _sign(payload: str) -> str:
        return _clear_sign(modulus_signer, payload)
    return _sign


@pytest.fixture(scope="session")
def other_signer() -> Callable[[str], str]:
    key = _new_signing_key("Impostor")

    def _sign(payload: str) -> str:
        return _clear_sign(key, payload)
    return _sign


@pytest.fixture(scope="session")
def signed_modulus(sign_modulus, modulus_bytes) -> str:
    return sign_modulus(b64_encode(modulus_bytes))


@pytest.fixture(scope="session")
def make_private_key() -> Callable[[str], pgpy.PGPKey]:
    """EdDSA primary + Curve25519 encryption subkey, protected with `passphrase`."""
    def _make(passphrase: str) -> pgpy.PGPKey:
        key = pgpy.PGPKey.new(PubKeyAlgorithm.EdDSA, EllipticCurveOID.Ed25519)
        uid = pgpy.PGPUID.new("Mailbox Owner", email="owner@mail.test")
        key.add_uid(
            uid,
            usage={KeyFlags.Sign, KeyFlags.Certify},
            hashes=[HashAlgorithm.SHA256],
            ciphers=[SymmetricKeyAlgorithm.AES256],
            compression=[CompressionAlgorithm.Uncompressed],
        )
        sub = pgpy.PGPKey.new(PubKeyAlgorithm.ECDH, EllipticCurveOID.Curve25519)
        key.add_subkey(sub, usage={KeyFlags.EncryptCommunications, KeyFlags.EncryptStorage})
        key.protect(passphrase, SymmetricKeyAlgorithm.AES256, HashAlgorithm.SHA256)
        return key
    return _make


# -----------------------------------------------------------------------------
# Accounts
# -----------------------------------------------------------------------------

class Account:
    def __init__(
        self,
        *,
        username: str,
        password: bytes,
        password_mode: PasswordMode,
        key: pgpy.PGPKey,
        key_salt: str = "",
        mailbox_password: Optional[bytes] = None,
    ):
        self.username = username
        self.password = password
        self.password_mode = password_mode
        self.key = key
        self.private_key = str(key)
        self.key_salt = key_salt
        self.mailbox_password = mailbox_password


@pytest.fixture(scope="session")
def single_password_account(make_private_key) -> Account:
    password = b"correct horse battery staple"
    salt = secrets.token_bytes(16)
    passphrase = compute_key_password(password, salt).decode("utf-8")
    return Account(
        username="alice",
        password=password,
        password_mode=PasswordMode.SINGLE,
        key=make_private_key(passphrase),
        key_salt=b64_encode(salt),
    )


@pytest.fixture(scope="session")
def two_password_account(make_private_key) -> Account:
    return Account(
        username="bob",
        password=b"login password",
        password_mode=PasswordMode.TWO,
        key=make_private_key("mailbox password"),
        mailbox_password=b"mailbox password",
    )


# -----------------------------------------------------------------------------
# Simulated SRP server
# -----------------------------------------------------------------------------

class SimulatedSrpServer:
    """
    Server half of the handshake, computed from the password verifier:
      v = g^x, B = k v + g^b, S = (A v^u)^b
    Each challenge is single-use.
    """
    def __init__(
        self,
        password: bytes,
        *,
        modulus_bytes: bytes,
        signed_modulus: str,
        version: int = 4,
        username: str = "",
        salt: Optional[bytes] = None,
    ):
        self.modulus_bytes = modulus_bytes
        self.signed_modulus = signed_modulus
        self.n = from_le_bytes(modulus_bytes)
        self.k = multiplier(self.n, modulus_bytes)
        self.version = version
        self.username = username
        self.salt = salt or secrets.token_bytes(10)

        x = from_le_bytes(hash_password(version, password, self.salt, modulus_bytes, username=username))
        self.verifier = pow(GENERATOR, x, self.n)
        self._sessions: dict[str, tuple[int, bytes]] = {}
        self._counter = 0

    def challenge(self) -> AuthParameters:
        self._counter += 1
        session = f"sess{self._counter}"
        while True:
            b = secrets.randbelow(self.n - 1)
            big_b = (self.k * self.verifier + pow(GENERATOR, b, self.n)) % self.n
            if 1 < big_b < self.n - 1:
                break
        b_bytes = to_le_bytes(big_b, SRP_BIT_LENGTH)
        self._sessions[session] = (b, b_bytes)
        return AuthParameters(
            version=self.version,
            modulus=self.signed_modulus,
            server_ephemeral=b64_encode(b_bytes),
            salt=b64_encode(self.salt),
            srp_session=session,
            username=self.username,
        )

    def verify(self, session: str, a_bytes: bytes, client_proof: bytes) -> Optional[bytes]:
        """Return M2 when the client proof checks out, None otherwise."""
        entry = self._sessions.pop(session, None)
        if entry is None:
            return None
        b, b_bytes = entry

        a_pub = from_le_bytes(a_bytes)
        u = scrambler(a_bytes, b_bytes)
        s = pow(a_pub * pow(self.verifier, u, self.n) % self.n, b, self.n)
        key = to_le_bytes(s, SRP_BIT_LENGTH)

        if expand_hash(a_bytes + b_bytes + key) != client_proof:
            return None
        return expand_hash(a_bytes + client_proof + key)


@pytest.fixture
def make_srp_server(modulus_bytes, signed_modulus) -> Callable[..., SimulatedSrpServer]:
    def _make(password: bytes, **kwargs) -> SimulatedSrpServer:
        return SimulatedSrpServer(
            password,
            modulus_bytes=modulus_bytes,
            signed_modulus=signed_modulus,
            **kwargs,
        )
    return _make


# -----------------------------------------------------------------------------
# Fake mail API (httpx.MockTransport)
# -----------------------------------------------------------------------------

class FakeMailApi:
    """
    In-memory stand-in for the auth endpoints.

    Knobs:
      - tamper_server_proof: flip one byte of M2 before answering /auth
      - info_code: API Code returned by /auth/info
    """
    def __init__(self, account: Account, srp: SimulatedSrpServer):
        self.account = account
        self.srp = srp
        self.requests: list[httpx.Request] = []
        self.tamper_server_proof = False
        self.info_code = 1000
        self.refresh_count = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]

    def bodies(self, method: str, path: str) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == method and r.url.path == path
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = (request.method, request.url.path)
        if route == ("POST", "/auth/info"):
            return self._auth_info()
        if route == ("POST", "/auth"):
            return self._auth(json.loads(request.content))
        if route == ("POST", "/auth/refresh"):
            return self._refresh()
        if route == ("DELETE", "/auth"):
            return httpx.Response(200, json={"Code": 1000})
        return httpx.Response(404, json={"Code": 2501, "Error": "Not found"})

    def _auth_info(self) -> httpx.Response:
        if self.info_code != 1000:
            return httpx.Response(200, json={"Code": self.info_code, "Error": "Unavailable"})
        params = self.srp.challenge()
        return httpx.Response(200, json={
            "Code": 1000,
            "Version": params.version,
            "Modulus": params.modulus,
            "ServerEphemeral": params.server_ephemeral,
            "Salt": params.salt,
            "SRPSession": params.srp_session,
            "TwoFactor": 0,
        })

    def _auth(self, body: dict) -> httpx.Response:
        m2 = self.srp.verify(
            body["SRPSession"],
            b64_decode(body["ClientEphemeral"]),
            b64_decode(body["ClientProof"]),
        )
        if m2 is None:
            return httpx.Response(422, json={"Code": 8002, "Error": "Incorrect login credentials"})
        if self.tamper_server_proof:
            m2 = bytes([m2[0] ^ 0x01]) + m2[1:]

        return httpx.Response(200, json={
            "Code": 1000,
            "AccessToken": "access-1",
            "RefreshToken": "refresh-1",
            "TokenType": "Bearer",
            "ExpiresIn": 3600,
            "Scope": "full self mail",
            "UID": "uid-1",
            "EventID": "event-1",
            "ServerProof": b64_encode(m2),
            "PasswordMode": int(self.account.password_mode),
            "PrivateKey": self.account.private_key,
            "KeySalt": self.account.key_salt,
        })

    def _refresh(self) -> httpx.Response:
        self.refresh_count += 1
        n = self.refresh_count + 1
        return httpx.Response(200, json={
            "Code": 1000,
            "AccessToken": f"access-{n}",
            "RefreshToken": f"refresh-{n}",
            "TokenType": "Bearer",
            "ExpiresIn": 7200,
            "UID": "uid-1",
        })


@pytest.fixture
def client_config(modulus_key) -> ClientConfig:
    return ClientConfig(
        client_id="mailauth-tests",
        api_url="https://mail.test",
        app_version="Other",
        modulus_key=modulus_key,
    )


@pytest.fixture
def fake_api(single_password_account, make_srp_server) -> FakeMailApi:
    acct = single_password_account
    return FakeMailApi(acct, make_srp_server(acct.password, username=acct.username))


@pytest.fixture
def fake_api_two_password(two_password_account, make_srp_server) -> FakeMailApi:
    acct = two_password_account
    return FakeMailApi(acct, make_srp_server(acct.password, username=acct.username))
