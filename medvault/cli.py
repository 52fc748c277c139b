from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer

from .audit.service import AuditService
from .config.settings import Settings
from .errors import MedVaultError
from .security.encryption import RecordEncryption
from .storage.service import DocumentService, create_blob_store
from .subject import is_valid_subject, normalize_subject

app = typer.Typer(add_completion=False, help="medvault document pipeline")

logger = logging.getLogger("medvault.cli")


class AddTraceIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = "system"
        return True


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - trace_id=%(trace_id)s - %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(AddTraceIdFilter())


def _subject(value: str) -> str:
    if not is_valid_subject(value):
        raise typer.BadParameter(f"not a subject identifier: {value}")
    return normalize_subject(value)


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(2)


def _encryption(settings: Settings) -> RecordEncryption:
    return RecordEncryption(settings.secret_value(), iterations=settings.kdf_iterations)


def _fail(e: MedVaultError) -> None:
    typer.echo(f"{e.kind}: {e.message}", err=True)
    raise typer.Exit(1)


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL")):
    configure_logging(log_level or os.getenv("LOG_LEVEL", "INFO"))


@app.command()
def encrypt(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    target: Path = typer.Argument(...),
    subject: str = typer.Option(..., "--subject", "-s", help="Subject the package is bound to"),
):
    """Seal SOURCE for SUBJECT and write the package to TARGET."""
    settings = _settings()
    try:
        package = _encryption(settings).encrypt(source.read_bytes(), _subject(subject))
    except MedVaultError as e:
        _fail(e)
    target.write_bytes(package)
    typer.echo(f"{target} ({len(package)} bytes)")


@app.command()
def decrypt(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    target: Path = typer.Argument(...),
    subject: str = typer.Option(..., "--subject", "-s"),
):
    """Open a package produced by ``encrypt``."""
    settings = _settings()
    try:
        plaintext = _encryption(settings).decrypt(source.read_bytes(), _subject(subject))
    except MedVaultError as e:
        _fail(e)
    target.write_bytes(plaintext)
    typer.echo(f"{target} ({len(plaintext)} bytes)")


async def _put(settings: Settings, data: bytes, file_name: str, subject: Optional[str], encrypt: bool):
    store = create_blob_store(settings)
    try:
        service = DocumentService(store, _encryption(settings), AuditService())
        return await service.upload(data, file_name, subject_id=subject, encrypt=encrypt)
    finally:
        await store.aclose()


async def _get(settings: Settings, address: str, subject: Optional[str], encrypted: bool) -> bytes:
    store = create_blob_store(settings)
    try:
        service = DocumentService(store, _encryption(settings), AuditService())
        return await service.download(address, subject_id=subject, is_encrypted=encrypted)
    finally:
        await store.aclose()


@app.command()
def put(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Encrypt for this subject"),
    encrypt: bool = typer.Option(True, "--encrypt/--no-encrypt"),
):
    """Store SOURCE in the configured blob store and print its address."""
    settings = _settings()
    subject_id = _subject(subject) if subject else None
    try:
        result = asyncio.run(_put(settings, source.read_bytes(), source.name, subject_id, encrypt))
    except MedVaultError as e:
        _fail(e)
    if result.is_placeholder:
        typer.echo("warning: blob store unavailable, document was NOT stored", err=True)
    typer.echo(result.content_address)


@app.command()
def get(
    address: str = typer.Argument(...),
    target: Path = typer.Argument(...),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Decrypt for this subject"),
):
    """Fetch ADDRESS from the blob store into TARGET, decrypting when a subject is given."""
    settings = _settings()
    subject_id = _subject(subject) if subject else None
    try:
        data = asyncio.run(_get(settings, address, subject_id, encrypted=subject_id is not None))
    except MedVaultError as e:
        _fail(e)
    target.write_bytes(data)
    typer.echo(f"{target} ({len(data)} bytes)")


if __name__ == "__main__":
    app()
