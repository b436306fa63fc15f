import argparse
import json
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

TWA_MANIFEST_NAME = "twa-manifest.json"
DEFAULT_CONFIG_PATH = "twa-config.json"
BUBBLEWRAP_CMD = os.environ.get("BUBBLEWRAP_CMD", "bubblewrap")
BUILD_OUTPUT_SUBDIR = os.path.join("app", "build", "outputs")

BUILD_TYPES = ("apk", "aab")
DISPLAY_MODES = ("standalone", "fullscreen", "minimal-ui", "browser")
ORIENTATIONS = (
    "any",
    "natural",
    "landscape",
    "landscape-primary",
    "landscape-secondary",
    "portrait",
    "portrait-primary",
    "portrait-secondary",
)

DEFAULT_ICONS = [
    {"src": "icon-192.png", "sizes": "192x192", "type": "image/png"},
    {"src": "icon-512.png", "sizes": "512x512", "type": "image/png"},
]

PATCHED = "patched"
NOT_INITIALIZED = "not-initialized"


class TwaBuildError(RuntimeError):
    pass


class CommandFailed(TwaBuildError):
    pass


class PrerequisiteMissing(TwaBuildError):
    pass


class RemoteManifestUnavailable(TwaBuildError):
    pass


class LocalInitFailed(TwaBuildError):
    pass


class BuildFailed(TwaBuildError):
    pass


class MalformedConfig(TwaBuildError):
    pass


class ConfigError(TwaBuildError):
    pass


def default_command_timeout() -> int:
    raw = os.environ.get("TWA_COMMAND_TIMEOUT", "1800")
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigError(f"TWA_COMMAND_TIMEOUT must be an integer number of seconds, got {raw!r}") from error


@dataclass
class TwaConfig:
    app_name: str = "Brimind Chat"
    short_name: str = "Brimind"
    package_id: str = "ai.brimind.pro"
    web_url: str = "https://ai.btimind.pro"
    host: str = ""  # derived from web_url when empty
    manifest_url: str = "https://ai.btimind.pro/manifest.json"
    start_url: str = "https://ai.btimind.pro"
    icon_path: str = "./assets/icon.png"
    output_dir: str = "./brimind-twa"
    local_manifest_path: str = "./assets/manifest.json"
    build_type: str = "apk"
    theme_color: str = "#1976d2"
    background_color: str = "#ffffff"
    display_mode: str = "standalone"
    orientation: str = "portrait"
    enable_notifications: bool = True
    signing_key_path: str = "./android.keystore"
    signing_key_alias: str = "android"
    icons: list[dict[str, str]] = field(default_factory=lambda: [dict(icon) for icon in DEFAULT_ICONS])
    bubblewrap_cmd: str = BUBBLEWRAP_CMD
    command_timeout: int = field(default_factory=default_command_timeout)


CONFIG_FIELDS = tuple(TwaConfig.__dataclass_fields__)
STRING_FIELDS = tuple(
    name for name, spec in TwaConfig.__dataclass_fields__.items() if spec.type in (str, "str")
)


def run_checked_command(
    command: list[str],
    action: str,
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    timeout: Optional[int] = None,
    capture: bool = True,
) -> subprocess.CompletedProcess:
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            env=env,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as error:
        raise CommandFailed(f"{action} failed. command={command} reason={error}") from error
    except subprocess.TimeoutExpired as error:
        raise CommandFailed(f"{action} timed out after {timeout}s. command={command}") from error

    if result.returncode == 0:
        return result

    if not capture:
        raise CommandFailed(f"{action} failed with exit status {result.returncode}. command={command}")

    stdout_tail = "\n".join((result.stdout or "").splitlines()[-120:])
    stderr_tail = "\n".join((result.stderr or "").splitlines()[-120:])
    raise CommandFailed(
        f"{action} failed. command={command}\n"
        f"--- stdout (tail) ---\n{stdout_tail}\n"
        f"--- stderr (tail) ---\n{stderr_tail}"
    )


def find_java_cmd() -> str:
    """Find a usable Java executable."""
    def _is_usable(java_path: str) -> bool:
        try:
            result = subprocess.run(
                [java_path, "-version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=60,
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired):
            return False

    java_home = os.environ.get("JAVA_HOME")
    if java_home:
        java_bin = os.path.join(java_home, "bin", "java")
        if os.path.isfile(java_bin) and os.access(java_bin, os.X_OK) and _is_usable(java_bin):
            return java_bin

    java_in_path = shutil.which("java")
    if java_in_path and _is_usable(java_in_path):
        return java_in_path

    # Homebrew/OpenJDK installs are often missing from PATH
    brew_candidates = [
        "/opt/homebrew/opt/openjdk@17/bin/java",
        "/opt/homebrew/opt/openjdk/bin/java",
        "/usr/local/opt/openjdk@17/bin/java",
        "/usr/local/opt/openjdk/bin/java",
    ]
    for candidate in brew_candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK) and _is_usable(candidate):
            return candidate

    raise PrerequisiteMissing("Java not found. Please install Java JDK 8 or higher and set JAVA_HOME if needed.")


def sdk_roots() -> list[str]:
    roots = [
        os.environ.get("ANDROID_SDK_ROOT"),
        os.environ.get("ANDROID_HOME"),
        os.path.expanduser("~/Library/Android/sdk"),
        os.path.expanduser("~/Android/Sdk"),
        "/usr/local/lib/android/sdk",
    ]
    result = []
    for root in roots:
        if root and os.path.isdir(root) and root not in result:
            result.append(root)
    return result


def find_android_sdk() -> Optional[str]:
    roots = sdk_roots()
    if roots:
        return roots[0]

    for tool in ("sdkmanager", "android"):
        tool_path = shutil.which(tool)
        if tool_path:
            return tool_path
    return None


def resolve_bubblewrap_cmd(bubblewrap_cmd: str) -> list[str]:
    command = shlex.split(bubblewrap_cmd)
    if not command:
        raise ConfigError("Bubblewrap command is empty")
    if shutil.which(command[0]) is None:
        raise PrerequisiteMissing(
            f"Bubblewrap CLI not found: {command[0]}. "
            "Install it with `npm i -g @bubblewrap/cli` or set --bubblewrap-cmd."
        )
    return command


def check_prerequisites(config: TwaConfig) -> list[str]:
    print("Checking prerequisites...")

    java_cmd = find_java_cmd()
    print(f"Java found: {java_cmd}")

    sdk = find_android_sdk()
    if sdk:
        print(f"Android SDK found: {sdk}")
    else:
        print("Warning: Android SDK not found. Bubblewrap will attempt to download it automatically.")

    bubblewrap = resolve_bubblewrap_cmd(config.bubblewrap_cmd)
    print(f"Bubblewrap found: {' '.join(bubblewrap)}")
    return bubblewrap


def build_web_manifest(config: TwaConfig) -> dict[str, Any]:
    return {
        "name": config.app_name,
        "short_name": config.short_name,
        "start_url": config.start_url,
        "display": config.display_mode,
        "orientation": config.orientation,
        "theme_color": config.theme_color,
        "background_color": config.background_color,
        "icons": [dict(icon) for icon in config.icons],
    }


def write_json_file(path: str, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")


def write_web_manifest(manifest_path: str, manifest_fields: dict[str, Any]) -> str:
    parent = os.path.dirname(manifest_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    write_json_file(manifest_path, manifest_fields)
    print(f"Manifest created at {manifest_path}")
    return manifest_path


def stage_manifest_icons(icon_path: str, manifest_path: str, icons: list[dict[str, str]]) -> list[str]:
    """Copy the source icon next to the local manifest under each missing icon src."""
    if not icon_path or not os.path.isfile(icon_path):
        print(f"Warning: icon {icon_path or '<unset>'} not found, manifest icons are left unresolved.")
        return []

    manifest_dir = os.path.dirname(os.path.abspath(manifest_path))
    staged = []
    for icon in icons:
        src = icon.get("src", "")
        if not src or "://" in src:
            continue
        target = os.path.join(manifest_dir, src)
        if os.path.exists(target):
            continue
        os.makedirs(os.path.dirname(target), exist_ok=True)
        shutil.copyfile(icon_path, target)
        staged.append(target)
    return staged


def reset_project_dir(project_dir: str) -> str:
    if os.path.exists(project_dir):
        print(f"Removing existing project directory: {project_dir}")
        shutil.rmtree(project_dir)
    os.makedirs(project_dir)
    return project_dir


def run_bubblewrap_init(
    bubblewrap: list[str], manifest: str, project_dir: str, timeout: Optional[int] = None
) -> None:
    print(f"[bubblewrap] init-start manifest={manifest}")
    run_checked_command(
        bubblewrap + ["init", "--manifest", manifest],
        "Bubblewrap init",
        cwd=project_dir,
        timeout=timeout,
        capture=False,
    )
    print(f"[bubblewrap] init-done manifest={manifest}")


def init_from_remote_manifest(
    bubblewrap: list[str], remote_manifest_url: str, project_dir: str, timeout: Optional[int] = None
) -> None:
    try:
        run_bubblewrap_init(bubblewrap, remote_manifest_url, project_dir, timeout=timeout)
    except CommandFailed as error:
        raise RemoteManifestUnavailable(
            f"Remote manifest {remote_manifest_url} could not be used: {error}"
        ) from error


def resolve_manifest_and_init(
    remote_manifest_url: str,
    local_manifest_path: str,
    static_manifest_fields: dict[str, Any],
    output_project_dir: str,
    bubblewrap: Optional[list[str]] = None,
    timeout: Optional[int] = None,
    icon_path: Optional[str] = None,
) -> str:
    print("Initializing Bubblewrap project...")
    bubblewrap = bubblewrap or shlex.split(BUBBLEWRAP_CMD)
    reset_project_dir(output_project_dir)

    try:
        init_from_remote_manifest(bubblewrap, remote_manifest_url, output_project_dir, timeout=timeout)
    except RemoteManifestUnavailable as error:
        print(f"[bubblewrap] remote-manifest-unavailable reason={error}")
        print("Remote manifest not found, using local manifest...")
        # bubblewrap runs inside the project dir, so hand it an absolute path
        local_manifest = os.path.abspath(local_manifest_path)
        reset_project_dir(output_project_dir)
        write_web_manifest(local_manifest, static_manifest_fields)
        if icon_path is not None:
            stage_manifest_icons(icon_path, local_manifest, static_manifest_fields.get("icons", []))
        try:
            run_bubblewrap_init(bubblewrap, local_manifest, output_project_dir, timeout=timeout)
        except CommandFailed as local_error:
            raise LocalInitFailed(
                f"Bubblewrap init failed with local manifest {local_manifest}: {local_error}"
            ) from local_error

    print("Bubblewrap project initialized")
    return os.path.join(output_project_dir, TWA_MANIFEST_NAME)


def derive_host(web_url: str) -> str:
    parsed = urlparse(web_url if "://" in web_url else f"https://{web_url}")
    if not parsed.hostname:
        raise ConfigError(f"Cannot derive host from web URL: {web_url!r}")
    return parsed.hostname


def build_twa_overrides(config: TwaConfig) -> dict[str, Any]:
    return {
        "packageId": config.package_id,
        "name": config.app_name,
        "launcherName": config.app_name,
        "host": config.host or derive_host(config.web_url),
        "startUrl": config.start_url,
        "themeColor": config.theme_color,
        "backgroundColor": config.background_color,
        "enableNotifications": config.enable_notifications,
        "signingKey": {
            "path": config.signing_key_path,
            "alias": config.signing_key_alias,
        },
    }


def load_twa_manifest(config_path: str) -> Optional[dict[str, Any]]:
    """Return the parsed project configuration, or None when bubblewrap has not written it yet."""
    if not os.path.exists(config_path):
        return None

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise MalformedConfig(f"{config_path} is not valid JSON: {error}") from error

    if not isinstance(data, dict):
        raise MalformedConfig(f"{config_path} must contain a JSON object, got {type(data).__name__}")
    return data


def merge_config_fields(current: dict[str, Any], overwrite_fields: dict[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    merged.update(overwrite_fields)
    return merged


def patch_twa_manifest(config_path: str, overwrite_fields: dict[str, Any]) -> str:
    print("Configuring TWA manifest...")
    current = load_twa_manifest(config_path)
    if current is None:
        print(f"Warning: {config_path} not found, skipping TWA manifest configuration.")
        return NOT_INITIALIZED

    write_json_file(config_path, merge_config_fields(current, overwrite_fields))
    print(f"TWA manifest configured: {config_path}")
    return PATCHED


def collect_build_outputs(project_dir: str, build_type: str) -> list[str]:
    suffix = f".{build_type}"
    outputs = set()
    root = Path(project_dir)
    if root.is_dir():
        outputs.update(str(path) for path in root.glob(f"*{suffix}") if path.is_file())

    build_outputs = root / BUILD_OUTPUT_SUBDIR
    if build_outputs.is_dir():
        outputs.update(str(path) for path in build_outputs.rglob(f"*{suffix}") if path.is_file())
    return sorted(outputs)


def build_app(config: TwaConfig, project_dir: str, bubblewrap: Optional[list[str]] = None) -> list[str]:
    print(f"Building {config.build_type.upper()}...")
    bubblewrap = bubblewrap or shlex.split(config.bubblewrap_cmd)

    command = bubblewrap + ["build"]
    if config.build_type == "aab":
        command.append("--skipSigning")

    try:
        run_checked_command(
            command,
            "Bubblewrap build",
            cwd=project_dir,
            timeout=config.command_timeout,
            capture=False,
        )
    except CommandFailed as error:
        raise BuildFailed(f"Build failed: {error}") from error

    outputs = collect_build_outputs(project_dir, config.build_type)
    print(f"{config.build_type.upper()} build completed!")
    if outputs:
        for output in outputs:
            print(f"Output: {output}")
    else:
        print(f"Warning: no .{config.build_type} files found in {project_dir}")
    return outputs


def load_config(config_path: str) -> dict[str, Any]:
    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise MalformedConfig(f"Config file {config_path} is not valid JSON: {error}") from error

    if not isinstance(data, dict):
        raise MalformedConfig(f"Config file {config_path} must contain a JSON object")

    unknown = sorted(set(data) - set(CONFIG_FIELDS))
    if unknown:
        print(f"Warning: ignoring unknown config keys in {config_path}: {', '.join(unknown)}")
    return {key: value for key, value in data.items() if key in CONFIG_FIELDS}


def validate_config(config: TwaConfig) -> TwaConfig:
    for name in STRING_FIELDS:
        value = getattr(config, name)
        if not isinstance(value, str):
            raise ConfigError(f"{name} must be a string, got {type(value).__name__}")
    if not isinstance(config.enable_notifications, bool):
        raise ConfigError(
            f"enable_notifications must be true or false, got {config.enable_notifications!r}"
        )
    if not isinstance(config.icons, list) or not all(isinstance(icon, dict) for icon in config.icons):
        raise ConfigError("icons must be a list of objects with src, sizes and type")

    if config.build_type not in BUILD_TYPES:
        raise ConfigError(f"build_type must be one of {', '.join(BUILD_TYPES)}, got {config.build_type!r}")
    if config.display_mode not in DISPLAY_MODES:
        raise ConfigError(
            f"display_mode must be one of {', '.join(DISPLAY_MODES)}, got {config.display_mode!r}"
        )
    if config.orientation not in ORIENTATIONS:
        raise ConfigError(f"orientation must be one of {', '.join(ORIENTATIONS)}, got {config.orientation!r}")
    if not config.package_id or "." not in config.package_id:
        raise ConfigError(f"package_id must be a dotted Android package name, got {config.package_id!r}")
    if not config.app_name:
        raise ConfigError("app_name cannot be empty")
    if (
        isinstance(config.command_timeout, bool)
        or not isinstance(config.command_timeout, int)
        or config.command_timeout <= 0
    ):
        raise ConfigError(f"command_timeout must be a positive integer, got {config.command_timeout!r}")

    if not config.host:
        config.host = derive_host(config.web_url)
    return config


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Package a web app as an Android TWA with Bubblewrap")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to config file")
    parser.add_argument("--app-name", help="Application and launcher name")
    parser.add_argument("--short-name", help="Short name used in the generated web manifest")
    parser.add_argument("--package-id", help="Android package identifier, e.g. com.example.app")
    parser.add_argument("--web-url", help="Web application URL")
    parser.add_argument("--host", help="Host served by the TWA (default: host of --web-url)")
    parser.add_argument("--manifest-url", help="Remote web manifest URL tried first")
    parser.add_argument("--start-url", help="Start URL of the web application")
    parser.add_argument("--icon-path", help="Icon copied next to a generated local manifest")
    parser.add_argument("--output-dir", help="Bubblewrap project directory (recreated on init)")
    parser.add_argument("--local-manifest", dest="local_manifest_path", help="Fallback manifest path")
    parser.add_argument("--build-type", choices=BUILD_TYPES, help="Artifact type to build")
    parser.add_argument("--theme-color", help="Theme color")
    parser.add_argument("--background-color", help="Background color")
    parser.add_argument("--display", dest="display_mode", choices=DISPLAY_MODES, help="Display mode")
    parser.add_argument("--orientation", choices=ORIENTATIONS, help="Screen orientation")
    parser.add_argument(
        "--no-notifications",
        dest="enable_notifications",
        action="store_const",
        const=False,
        default=None,
        help="Disable notification delegation",
    )
    parser.add_argument("--signing-key-path", help="Keystore path written into twa-manifest.json")
    parser.add_argument("--signing-key-alias", help="Key alias written into twa-manifest.json")
    parser.add_argument("--bubblewrap-cmd", help="Bubblewrap command, e.g. 'npx @bubblewrap/cli'")
    parser.add_argument("--timeout", dest="command_timeout", type=int, help="Timeout in seconds per bubblewrap call")
    parser.add_argument("--skip-init", action="store_true", help="Reuse the existing project, only patch and build")
    parser.add_argument("--skip-build", action="store_true", help="Stop after init and configuration")
    return parser


def resolve_config(args: argparse.Namespace, file_config: dict[str, Any]) -> TwaConfig:
    values: dict[str, Any] = {}
    for name in CONFIG_FIELDS:
        cli_value = getattr(args, name, None)
        if cli_value is not None:
            values[name] = cli_value
        elif name in file_config:
            values[name] = file_config[name]
    return validate_config(TwaConfig(**values))


def run_workflow(config: TwaConfig, skip_init: bool = False, skip_build: bool = False) -> list[str]:
    bubblewrap = check_prerequisites(config)
    project_dir = config.output_dir
    twa_manifest_path = os.path.join(project_dir, TWA_MANIFEST_NAME)

    if skip_init:
        print(f"--skip-init enabled, reusing existing project in {project_dir}")
    else:
        manifest_fields = build_web_manifest(config)
        twa_manifest_path = resolve_manifest_and_init(
            config.manifest_url,
            config.local_manifest_path,
            manifest_fields,
            project_dir,
            bubblewrap=bubblewrap,
            timeout=config.command_timeout,
            icon_path=config.icon_path,
        )

    patch_twa_manifest(twa_manifest_path, build_twa_overrides(config))

    if skip_build:
        print("--skip-build enabled, not building the app.")
        return []
    return build_app(config, project_dir, bubblewrap=bubblewrap)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args, load_config(args.config))
        print(f"Starting {config.app_name} app builder...")
        print(f"App: {config.app_name}")
        print(f"URL: {config.web_url}")
        print(f"Package: {config.package_id}")

        run_workflow(config, skip_init=args.skip_init, skip_build=args.skip_build)
    except (TwaBuildError, OSError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    print("Build process completed successfully!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
