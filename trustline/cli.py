import typer, getpass, pathlib, json, os, tempfile
from typing import List, Optional

from .backup import seal_backup, open_backup, read_metadata
from .encoder import ConfigurationEncoder
from .encryption import PayloadEncryptionService
from .errors import TrustlineError, ConfigValidationError, SecurityViolationError
from .logging import get_logger
from .settings import TrustlineSettings

app = typer.Typer(no_args_is_help=True)
LOG = get_logger(False)


@app.callback()
def _root(ctx: typer.Context, debug: bool = typer.Option(False, "--debug", help="Log to stderr instead of the log file")):
    if debug:
        get_logger(True)
        ctx.call_on_close(lambda: get_logger(False))


def _log_error(event: str, message: str, **details):
    LOG.error(event, message=message, **details)


def _fail(event: str, exc: TrustlineError):
    """Report a typed failure and exit 1; only the error's own user-facing text is shown."""
    _log_error(event, message=exc.message, code=exc.code)
    typer.echo(f"✖ {exc.message}")
    raise typer.Exit(1)


def _settings() -> TrustlineSettings:
    try:
        return TrustlineSettings.from_env()
    except ValueError as exc:
        typer.echo(f"✖ Invalid TRUSTLINE_* setting: {exc}")
        raise typer.Exit(2)


def ask_pw(password_file: Optional[str], prompt="Password: ") -> str:
    """Read the password from --password-file, or prompt for it with getpass."""
    if password_file is not None:
        return pathlib.Path(password_file).read_text(encoding="utf-8").rstrip("\r\n")
    return getpass.getpass(prompt)


def ask_new_password(password_file: Optional[str]) -> str:
    if password_file is not None:
        return ask_pw(password_file)
    first = ask_pw(None, "New password: ")
    second = ask_pw(None, "Confirm password: ")
    if first != second:
        typer.echo("✖ Passwords did not match. Aborting.")
        raise typer.Exit(1)
    return first


def write_private_file(path: pathlib.Path, text: str):
    """Atomically write `text` with mode 0600 (owner read/write only)."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        os.chmod(path, 0o600)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def _emit(text: str, out: Optional[str], newline: bool = True):
    if out is None or out == "-":
        typer.echo(text)
    else:
        write_private_file(pathlib.Path(out), text + "\n" if newline else text)
        typer.echo(f"✔ Wrote {out}")


def _read_json(path: str):
    try:
        return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        typer.echo(f"✖ Could not read JSON from {path}: {exc}")
        raise typer.Exit(1)


# --- encrypted payloads ----------------------------------------------------

@app.command()
def encrypt(
    path: str = typer.Argument(..., help="Text file to encrypt"),
    out: str = typer.Option("-", "--out", help="Where to write the encrypted payload JSON"),
    password_file: Optional[str] = typer.Option(None, "--password-file"),
):
    """Encrypt a text file into a {cipherText, salt, iv} JSON record."""
    service = PayloadEncryptionService(_settings().kdf)
    plaintext = pathlib.Path(path).read_text(encoding="utf-8")
    password = ask_new_password(password_file)
    try:
        payload = service.encrypt(plaintext, password)
    except TrustlineError as exc:
        _fail("encrypt_failed", exc)
    _emit(payload.model_dump_json(by_alias=True, indent=2), out)


@app.command()
def decrypt(
    path: str = typer.Argument(..., help="Encrypted payload JSON"),
    out: str = typer.Option("-", "--out", help="Where to write the plaintext"),
    password_file: Optional[str] = typer.Option(None, "--password-file"),
):
    """Decrypt a payload written by `encrypt`."""
    service = PayloadEncryptionService(_settings().kdf)
    raw = _read_json(path)
    password = ask_pw(password_file)
    try:
        plaintext = service.decrypt(raw if isinstance(raw, dict) else {}, password)
    except TrustlineError as exc:
        _fail("decrypt_failed", exc)
    _emit(plaintext, out, newline=False)


# --- configuration codes ---------------------------------------------------

@app.command()
def encode(config_path: str = typer.Argument(..., help="Site configuration JSON")):
    """Print the configuration code for a site configuration (after validating it)."""
    encoder = ConfigurationEncoder(_settings())
    raw = _read_json(config_path)
    try:
        result = encoder.validate(raw)
        code = encoder.encode(result.sanitized_config)
    except TrustlineError as exc:
        _fail("encode_failed", exc)
    for warning in result.warnings:
        typer.echo(f"⚠ {warning.field}: {warning.message}", err=True)
    typer.echo(code)


@app.command()
def decode(code: str = typer.Argument(..., help="Configuration code, or @FILE to read it from a file")):
    """Decode a configuration code and print the configuration JSON (not validated)."""
    if code.startswith("@"):
        code = pathlib.Path(code[1:]).read_text(encoding="utf-8")
    try:
        config = ConfigurationEncoder(_settings()).decode(code)
    except TrustlineError as exc:
        _fail("decode_failed", exc)
    typer.echo(config.model_dump_json(by_alias=True, exclude_none=True, indent=2))


@app.command()
def validate(
    source: str = typer.Argument(..., help="Configuration JSON file, or a configuration code with --code"),
    code: bool = typer.Option(False, "--code", help="Treat SOURCE as a configuration code"),
    existing: List[str] = typer.Option([], "--existing", help="Hostname already configured (repeatable)"),
):
    """Validate a configuration and print the sanitized result with any warnings."""
    encoder = ConfigurationEncoder(_settings())
    try:
        result = encoder.import_code(source) if code else encoder.validate(_read_json(source))
    except ConfigValidationError as exc:
        for field, message in exc.issues:
            typer.echo(f"✖ {field}: {message}")
        _log_error("validate_failed", message="invalid configuration", code=exc.code)
        raise typer.Exit(1)
    except SecurityViolationError as exc:
        for r in exc.results:
            typer.echo(f"✖ [{r.rule_id}] {r.message}")
        _log_error("validate_failed", message="security violation", code=exc.code, rules=",".join(exc.rule_ids))
        raise typer.Exit(1)
    except TrustlineError as exc:
        _fail("validate_failed", exc)
    for warning in result.warnings:
        typer.echo(f"⚠ {warning.field}: {warning.message}")
    if result.overwrites(existing):
        typer.echo(f"⚠ A configuration for {result.sanitized_config.hostname} already exists and would be replaced.")
    typer.echo(result.sanitized_config.model_dump_json(by_alias=True, exclude_none=True, indent=2))


# --- backup files ----------------------------------------------------------

@app.command()
def seal(
    dataset_path: str = typer.Argument(..., help="Dataset JSON (prompts, categories, settings)"),
    out: str = typer.Option(..., "--out"),
    plain: bool = typer.Option(False, "--plain", help="Write an unencrypted backup"),
    password_file: Optional[str] = typer.Option(None, "--password-file"),
):
    """Write a backup file, encrypted by default."""
    dataset = _read_json(dataset_path)
    if not isinstance(dataset, dict):
        typer.echo("✖ Dataset must be a JSON object")
        raise typer.Exit(1)
    service = PayloadEncryptionService(_settings().kdf)
    password = None if plain else ask_new_password(password_file)
    try:
        text = seal_backup(dataset, password, service)
    except TrustlineError as exc:
        _fail("seal_failed", exc)
    _emit(text, out)


@app.command("open")
def open_cmd(
    backup_path: str = typer.Argument(...),
    out: str = typer.Option("-", "--out"),
    password_file: Optional[str] = typer.Option(None, "--password-file"),
):
    """Verify (and decrypt) a backup file and write the dataset JSON."""
    text = pathlib.Path(backup_path).read_text(encoding="utf-8")
    service = PayloadEncryptionService(_settings().kdf)
    try:
        meta = read_metadata(text)
        password = ask_pw(password_file) if meta.encrypted else None
        dataset = open_backup(text, password, service)
    except TrustlineError as exc:
        _fail("open_failed", exc)
    _emit(json.dumps(dataset, indent=2, ensure_ascii=False), out)


def main():
    app()


if __name__ == "__main__":
    main()
