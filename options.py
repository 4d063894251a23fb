from pathlib import Path
from installer_errors import DEFAULT_CRITICAL_MARKERS
from output_classifier import OPERATION_INSTALL, OPERATION_UNINSTALL
import json, os, tempfile, logging

home_user = os.getenv("HOME") or str(Path.home())

logger = logging.getLogger(__name__)

DEFAULT_STAGE_DELAY_SCALE = 1.0
DEFAULT_MIN_FREE_SPACE_MB = 512


class Options:
    config_file_path = Path(home_user).joinpath(".config", "Install Helper", "config.json")
    operations = []
    apps = {}
    stage_delay_scale = DEFAULT_STAGE_DELAY_SCALE
    critical_markers = list(DEFAULT_CRITICAL_MARKERS)
    failure_progress = None
    dry_run = False
    min_free_space_mb = DEFAULT_MIN_FREE_SPACE_MB

    @staticmethod
    def reset():
        Options.operations = []
        Options.apps = {}
        Options.stage_delay_scale = DEFAULT_STAGE_DELAY_SCALE
        Options.critical_markers = list(DEFAULT_CRITICAL_MARKERS)
        Options.failure_progress = None
        Options.dry_run = False
        Options.min_free_space_mb = DEFAULT_MIN_FREE_SPACE_MB

    @staticmethod
    def _normalize_operations(raw_operations):
        operations = []
        if not isinstance(raw_operations, list):
            logger.warning("Invalid 'operations' entry: expected list")
            return operations
        for item in raw_operations:
            if isinstance(item, str):
                item = {"app": item}
            if not isinstance(item, dict) or not str(item.get("app", "")).strip():
                logger.warning(f"Ignoring invalid operation entry: {item!r}")
                continue
            operation = str(item.get("operation", OPERATION_INSTALL)).lower()
            if operation not in (OPERATION_INSTALL, OPERATION_UNINSTALL):
                logger.warning(f"Ignoring operation '{operation}' for {item['app']}: unsupported kind")
                continue
            operations.append({"app": str(item["app"]).strip(), "operation": operation,
                               "name": str(item.get("name", "") or "")})
        return operations

    @staticmethod
    def _as_float(value, default, minimum=0.0, maximum=None):
        try:
            value = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid numeric value {value!r}, using {default}")
            return default
        value = max(minimum, value)
        return min(maximum, value) if maximum is not None else value

    @staticmethod
    def _prepare_config_data():
        return {
            "operations": [dict(op) for op in Options.operations],
            "apps": {key: dict(data) for key, data in sorted(Options.apps.items())},
            "stage_delay_scale": Options.stage_delay_scale,
            "critical_markers": list(Options.critical_markers),
            "failure_progress": Options.failure_progress,
            "dry_run": Options.dry_run,
            "min_free_space_mb": Options.min_free_space_mb,
        }

    @staticmethod
    def save_config():
        config_dir = Path(Options.config_file_path).parent
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Error creating config directory: {e}")
            return False

        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(dir=config_dir, delete=False, mode='w', encoding='utf-8') as temp_file:
                temp_path = temp_file.name
                json.dump(Options._prepare_config_data(), temp_file, indent=4, ensure_ascii=False)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            os.replace(temp_path, Options.config_file_path)
            return True

        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving config: {e}")
            if temp_path and os.path.exists(temp_path):
                try:
                    os.unlink(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove temporary config file {temp_path}: {cleanup_error}")
            return False

    @staticmethod
    def load_config(file_path=None):
        file_path = Path(file_path or Options.config_file_path)
        if not file_path.exists():
            logger.warning(f"Config file not found: {file_path}")
            return False

        try:
            with open(file_path, encoding='utf-8') as file:
                config_data = json.load(file)
        except (IOError, json.JSONDecodeError) as e:
            error_type = "JSON decoding" if isinstance(e, json.JSONDecodeError) else "loading"
            logger.error(f"Error {error_type} config from {file_path}: {e}")
            return False

        if not isinstance(config_data, dict):
            logger.warning("Invalid config format: expected dictionary")
            return False

        Options.operations = Options._normalize_operations(config_data.get("operations", []))

        apps = config_data.get("apps", {})
        Options.apps = apps if isinstance(apps, dict) else {}

        Options.stage_delay_scale = Options._as_float(config_data.get("stage_delay_scale", DEFAULT_STAGE_DELAY_SCALE),
                                                      DEFAULT_STAGE_DELAY_SCALE)

        markers = config_data.get("critical_markers", list(DEFAULT_CRITICAL_MARKERS))
        Options.critical_markers = [str(m) for m in markers if m] if isinstance(markers, list) \
            else list(DEFAULT_CRITICAL_MARKERS)

        failure_progress = config_data.get("failure_progress")
        Options.failure_progress = None if failure_progress is None \
            else Options._as_float(failure_progress, None, 0.0, 1.0)

        Options.dry_run = bool(config_data.get("dry_run", False))
        Options.min_free_space_mb = int(Options._as_float(config_data.get("min_free_space_mb", DEFAULT_MIN_FREE_SPACE_MB),
                                                          DEFAULT_MIN_FREE_SPACE_MB))
        logger.info(f"Loaded config from {file_path}: {len(Options.operations)} operation(s)")
        return True
