"""Connecting to MongoDB and inspecting the server."""

from __future__ import annotations

import inspect
import json
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from typing import Any

import pymongo
from pymongo.errors import PyMongoError

log = logging.getLogger(__name__)


class MongoConnectionError(Exception):
    """Raised when a MongoDB session cannot be established or queried."""


def _parse_credentials_and_hosts(uri: str) -> tuple[bool, list[str]]:
    """Return whether the URI carries both a user and a secret, and its hosts."""
    rest = uri[len("mongodb://"):]
    end = len(rest)
    for sep in ("/", "?"):
        pos = rest.find(sep)
        if pos != -1:
            end = min(end, pos)
    authority = rest[:end]
    userinfo, _, hosts = authority.rpartition("@")
    fields = userinfo.split(":", 1)
    has_credentials = len(fields) == 2 and all(fields)
    addrs = [h for h in hosts.split(",") if h]
    if not addrs:
        raise ValueError("no reachable servers in URL")
    return has_credentials, addrs


def redact_mongo_uri(uri: str) -> str:
    """Hide the credentials of a mongodb:// URI."""
    if uri.startswith("mongodb://") and "@" in uri:
        uri = uri.replace("ssl=true", "", 1)
        try:
            has_credentials, addrs = _parse_credentials_and_hosts(uri)
        except ValueError as err:
            log.error("Cannot parse mongodb server url: %s", err)
            return "unknown/error"
        if has_credentials:
            return "mongodb://****:****@" + ",".join(addrs)
    return uri


@dataclass
class MongoSessionOpts:
    """Options for opening a MongoDB session. Timeouts are in seconds."""

    uri: str = "mongodb://localhost:27017"
    tls_connection: bool = False
    tls_certificate_file: str = ""
    tls_private_key_file: str = ""
    tls_ca_file: str = ""
    tls_hostname_validation: bool = False
    pool_limit: int = 0
    socket_timeout: float = 3.0
    sync_timeout: float = 60.0
    authentication_db: str = ""


def load_ca_from(pem_file: str) -> ssl.SSLContext:
    """Read a PEM bundle of CA certificates into a client context."""
    with open(pem_file, encoding="ascii", errors="replace") as fh:
        data = fh.read()
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        context.load_verify_locations(cadata=data)
    except ssl.SSLError:
        # Unparseable content is ignored, leaving an empty pool.
        pass
    return context


def load_key_pair_from(pem_file: str, private_key_pem_file: str = "") -> tuple[str, str]:
    """Check that a certificate and key load; the key defaults to the certificate file."""
    key_file = private_key_pem_file or pem_file
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_cert_chain(pem_file, key_file)
    return pem_file, key_file


def _combined_pem(cert_file: str, key_file: str) -> str:
    if cert_file == key_file:
        return cert_file
    with open(cert_file, encoding="ascii") as c, open(key_file, encoding="ascii") as k:
        content = c.read().rstrip("\n") + "\n" + k.read()
    fd, path = tempfile.mkstemp(suffix=".pem")
    with os.fdopen(fd, "w", encoding="ascii") as out:
        out.write(content)
    return path


def _tls_options(opts: MongoSessionOpts) -> dict[str, Any]:
    if not opts.tls_connection:
        return {}
    options: dict[str, Any] = {
        "tls": True,
        "tlsAllowInvalidHostnames": not opts.tls_hostname_validation,
    }
    if opts.tls_certificate_file:
        try:
            cert, key = load_key_pair_from(opts.tls_certificate_file, opts.tls_private_key_file)
        except (OSError, ssl.SSLError) as err:
            raise MongoConnectionError(
                f"Cannot load key pair from '{opts.tls_certificate_file}' and "
                f"'{opts.tls_private_key_file}' to connect to server "
                f"'{redact_mongo_uri(opts.uri)}'. Got: {err}"
            ) from err
        options["tlsCertificateKeyFile"] = _combined_pem(cert, key)
    if opts.tls_ca_file:
        try:
            load_ca_from(opts.tls_ca_file)
        except OSError as err:
            raise MongoConnectionError(
                f"Couldn't load client CAs from {opts.tls_ca_file}. Got: {err}"
            ) from err
        options["tlsCAFile"] = opts.tls_ca_file
    return options


def mongo_session(opts: MongoSessionOpts) -> pymongo.MongoClient:
    """Open a direct, fail-fast connection and return the ready client."""
    if "ssl=true" in opts.uri:
        opts.uri = opts.uri.replace("ssl=true", "", 1)
        opts.tls_connection = True
    options: dict[str, Any] = {
        "directConnection": True,
        "connectTimeoutMS": int(opts.socket_timeout * 1000) or None,
        "socketTimeoutMS": int(opts.socket_timeout * 1000) or None,
        "serverSelectionTimeoutMS": int(opts.sync_timeout * 1000) or 1,
        "readPreference": "nearest",
        "retryReads": False,
        "retryWrites": False,
    }
    if opts.pool_limit > 0:
        options["maxPoolSize"] = opts.pool_limit
    if opts.authentication_db:
        options["authSource"] = opts.authentication_db
    options.update(_tls_options(opts))
    try:
        client = pymongo.MongoClient(opts.uri, **options)
        client.admin.command("ping")
    except (PyMongoError, ValueError, TypeError) as err:
        raise MongoConnectionError(
            f"Cannot connect to server using url {redact_mongo_uri(opts.uri)}: {err}"
        ) from err
    return client


def mongo_session_server_version(client: Any) -> str:
    """Return the server version reported by buildInfo."""
    try:
        return str(client.admin.command("buildInfo")["version"])
    except (PyMongoError, KeyError) as err:
        raise MongoConnectionError(f"Could not get MongoDB BuildInfo: {err}") from err


def mongo_session_node_type(client: Any) -> str:
    """Classify the server as 'replset', 'mongos' or 'mongod'."""
    try:
        doc = client.admin.command("isMaster")
    except PyMongoError as err:
        raise MongoConnectionError(f"Got unknown node type: {err}") from err
    if doc.get("setName") is not None or doc.get("hosts") is not None:
        return "replset"
    if doc.get("msg") == "isdbgrid":
        return "mongos"
    return "mongod"


def test_connection(opts: MongoSessionOpts) -> bytes:
    """Connect and return buildInfo as indented JSON."""
    client = mongo_session(opts)
    try:
        info = client.admin.command("buildInfo")
    except PyMongoError as err:
        raise MongoConnectionError(
            f"Cannot get buildInfo() for MongoDB using uri {redact_mongo_uri(opts.uri)}: {err}"
        ) from err
    finally:
        client.close()
    return json.dumps(dict(info), indent=2, default=str).encode()


test_connection.__test__ = False  # type: ignore[attr-defined]


def add_code_comment_to_query(cursor: Any) -> Any:
    """Attach the caller's file and line to the query as a comment."""
    frame = inspect.currentframe()
    caller = frame.f_back if frame is not None else None
    if caller is None:
        return cursor
    try:
        comment = f"{caller.f_code.co_filename}:{caller.f_lineno}"
    finally:
        del frame, caller
    return cursor.comment(comment)