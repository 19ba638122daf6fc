"""Centralized user-facing text for frpfleet CLI."""

from __future__ import annotations

class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "frpfleet - index, query and operate a fleet of FRP tunnel configs."
    HELP_VERSION = "Show version and exit."
    HELP_VERBOSE = "Enable debug logging."
    HELP_LOG_LEVEL = "Log level for diagnostics on stderr (DEBUG, INFO, WARNING, ERROR)."
    HELP_TAG = "Attach, remove and list key/value tags on indexed configs."
    HELP_TAG_PATH = "Path to an indexed config file."
    HELP_TAG_LIST_PATH = "Config file whose tags to list; omit to list every tag in use."
    HELP_TAG_KEY = "Tag key (must not contain ':')."
    HELP_TAG_VALUE = "Tag value."
    HELP_PRESET = "Manage saved filter presets."
    HELP_PRESET_NAME = "Name of the preset."
    HELP_PRESET_USE = "Prepend the filters stored under this preset name."
    HELP_PRESET_SAVE = "Save the filters of this query under a preset name."
    HELP_QUERY_FILTER = (
        "Filter expression: all, type:server|client, tag:key[:value], name:, ip:, port: or status:."
    )
    HELP_SEARCH_QUERY = "IP, port, tag (key:value) or name fragment to look for."
    HELP_FILTER_TYPE = "Treat the expression as this filter kind instead of detecting it."
    HELP_FILTER = "Filter expression; repeat to combine filters with AND."
    HELP_OUTPUT_FORMAT = "Output format: rich (table), porcelain (tab-separated) or json."
    HELP_BULK_ACTION = "Lifecycle action to run: start, stop, restart or reload."
    HELP_MAX_PARALLEL = "Maximum number of service actions running at once."
    HELP_ACTION_TIMEOUT = "Seconds to wait for each service action."
    HELP_DRY_RUN = "Show what would happen without changing anything."
    HELP_PROBE_PARALLEL = "Maximum number of connection probes running at once."
    HELP_PROBE_TIMEOUT = "Seconds to wait for each TCP connection."
    HELP_INDEX_REBUILD = "Re-scan every config file and drop rows for deleted files."
    HELP_INDEX_FILE = "Index a single config file."
    HELP_INDEX_SHOW = "Show index totals and the last sync time."
    HELP_INDEX_VERIFY = "Compare the index with the config directory without changing it."
    HELP_INDEX_CLEAR = "Delete the index database."
    HELP_UPDATE_FIELD = "Dotted TOML key to change, e.g. serverAddr or auth.token."
    HELP_UPDATE_VALUE = "New value; TOML literals are kept as typed, anything else becomes a string."
    HELP_UPDATE_FROM_FILE = "JSON file with a list of {field, value, filters} updates applied together."
    HELP_STATUS_REFRESH = "Recompute the summary now instead of serving the cached one."
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SET_CONFIG_DIR = "Set the directory holding the FRP config files."
    HELP_SET_FRP_DIR = "Set the directory holding the frps/frpc binaries."
    HELP_SET_SERVICE_PREFIX = "Set the prefix of the systemd units managing configs."
    HELP_SET_TTL = "Set the status cache time-to-live in seconds."
    HELP_SET_MAX_PARALLEL = "Set the default bulk action concurrency."
    HELP_SET_PROBE_PARALLEL = "Set the default probe concurrency."
    HELP_SET_PROBE_TIMEOUT = "Set the default probe timeout in seconds."
    HELP_SET_AUTO_SYNC = "Enable or disable the incremental sync run before queries (true/false)."
    HELP_ADD_EXCLUDE = "Add a gitignore-style pattern of config files to skip; repeatable."
    HELP_CLEAR_EXCLUDES = "Remove all exclude patterns."
    HELP_SET_ACTION_TIMEOUT = "Set the default per-action timeout in seconds."
    HELP_BACKUP = "List and restore the copies saved before bulk updates."
    HELP_BACKUP_LIST_PATH = "Config file whose backups to list; omit to list every backup."
    HELP_BACKUP_NAME = "Backup file name (as listed) or path."
    HELP_BACKUP_TARGET = "Config file to overwrite with the backup."

    ERROR_CONFIG_JSON_INVALID = "Config file is not valid JSON; fix or delete it and try again."
    ERROR_CONFIG_VALUE_INVALID = "Invalid value for config field '{field}'."
    ERROR_BOOLEAN_INVALID = "Expected true or false, got '{value}'."
    ERROR_LOG_LEVEL_INVALID = "Unsupported log level '{value}'. Choose one of: {allowed}."
    ERROR_KIND_INVALID = "Unknown config type '{value}'. Choose one of: {allowed}."
    ERROR_REBUILD_LOCKED = (
        "Another rebuild holds {path}; gave up after {timeout} seconds."
    )
    ERROR_CONFIG_NOT_INDEXED = "{path} is not indexed."
    HINT_INDEX_FIRST = "Run `frpfleet index` first."
    ERROR_TAG_KEY_INVALID = "Invalid tag key '{key}': keys must be non-empty and must not contain ':'."
    ERROR_TAG_VALUE_EMPTY = "Tag value must not be empty."
    ERROR_FILTER_KIND_INVALID = "Unknown filter kind '{value}'. Choose one of: {allowed}."
    ERROR_FILTER_VALUE_EMPTY = "Filter '{kind}:' needs a value."
    ERROR_FILTER_PORT_INVALID = "'{value}' is not a valid port (1-65535)."
    ERROR_FILTER_REQUIRED = "Select targets with --filter (use `--filter all` for every config)."
    ERROR_PRESET_NAME_EMPTY = "Preset name must not be empty."
    ERROR_PRESET_FILTERS_EMPTY = "A preset needs at least one filter."
    ERROR_PRESET_NOT_FOUND = "No preset named '{name}'."
    ERROR_INDEX_OPTIONS_EXCLUSIVE = (
        "Use only one of --rebuild, --file, --show, --verify or --clear."
    )
    ERROR_STATUS_FAILED = "Cannot compute status: {reason}"
    ERROR_BULK_UPDATE_ABORTED = "Bulk update aborted; no file was changed. {detail}"
    ERROR_UPDATE_ROLLED_BACK = "Bulk update aborted; no file was changed:"
    ERROR_UPDATE_ARGS_MISSING = "Provide FIELD and VALUE, or --from-file."
    ERROR_UPDATE_ARGS_CONFLICT = "--from-file cannot be combined with FIELD and VALUE."
    ERROR_UPDATES_FILE_INVALID = "Cannot read updates from {path}: {reason}"
    ERROR_FIELD_INVALID = "'{field}' is not a valid dotted TOML key."
    ERROR_FIELD_PROTECTED = "'{field}' holds proxy definitions and cannot be bulk edited."
    ERROR_FIELD_NOT_APPLIED = "Cannot place '{field}' in this file."
    ERROR_FILE_CHANGED = "File changed on disk since the update was planned."
    ERROR_VALIDATION_PORT = "{field} must be an integer between 1 and 65535."
    ERROR_VALIDATION_ADDR = "'{value}' is not a valid IPv4 address or hostname."
    ERROR_VALIDATION_TOKEN_EMPTY = "auth.token must not be empty."
    ERROR_VALIDATION_TOKEN_SHORT = "auth.token on a server must be at least {length} characters."
    ERROR_BACKUP_NOT_FOUND = "No backup named '{name}'."
    ERROR_BACKUP_INVALID = "Backup {name} is not a valid config: {reason}"

    INFO_NO_MATCHES = "No configs match the filters."
    INFO_SEARCH_AS = "Searching as {filter}"
    INFO_PRESET_SAVED = "Preset '{name}' saved."
    INFO_PRESET_DELETED = "Preset '{name}' deleted."
    INFO_NO_PRESETS = "No presets saved."
    INFO_BULK_RUNNING = "Running {action} on {count} service(s), {parallel} at a time..."
    INFO_DRY_RUN_BULK = "DRY-RUN: would {action} these services:"
    INFO_NO_PROBE_TARGETS = "No client configs with a server address and port to probe."
    INFO_PROBE_SKIPPED = "Skipped {count} config(s) without a server endpoint."
    INFO_TAG_ADDED = "Tagged {path} with {key}:{value}."
    INFO_TAG_REMOVED = "Removed tag {key} from {path}."
    INFO_TAG_NOT_SET = "{path} has no tag {key}."
    INFO_TAG_BULK_DONE = "Tagged {count} config(s) with {key}:{value}."
    INFO_NO_TAGS = "No tags found."
    INFO_INDEX_SAVED = "Indexed {count} file(s), removed {removed} stale row(s); index at {path}."
    INFO_INDEX_EMPTY = "No config files found; the index is empty."
    INFO_INDEX_UP_TO_DATE = "Index already matches the config directory; nothing to do."
    INFO_INDEX_CLEARED = "Index removed."
    INFO_INDEX_CLEAR_NONE = "No index to remove."
    INFO_INDEX_VERIFIED = "Index matches the config directory."
    INFO_INDEX_STATS = (
        "Configs: {total} ({servers} servers, {clients} clients)\n"
        "Proxies: {proxies}\n"
        "Last sync: {last_sync}"
    )
    INFO_FILE_INDEXED = "Indexed {path} as {kind}."
    INFO_DRY_RUN_UPDATE = "DRY-RUN: {count} file(s) would change; nothing was written."
    INFO_UPDATE_DONE = "Updated {count} file(s); {backups} backup(s) written."
    INFO_UPDATE_NO_MATCH = "No configs match {filters}."
    INFO_NO_BACKUPS = "No backups found."
    INFO_BACKUP_RESTORED = "Restored {path} from {name}."
    INFO_BACKUP_SAVED_PREVIOUS = "Previous contents saved as {name}."
    INFO_STATUS_TITLE = "FRP fleet status"
    INFO_STATUS_AGE = "Captured {age:.1f}s ago (ttl {ttl:g}s)."
    INFO_STATUS_REFRESHING = "Refreshing in the background..."
    INFO_CONFIG_UPDATED = "Configuration updated."
    INFO_CONFIG_SUMMARY = (
        "Config directory: {config_dir}\n"
        "FRP directory: {frp_dir}\n"
        "Service prefix: {prefix}\n"
        "Status TTL: {ttl:g}s\n"
        "Max parallel: {max_parallel}\n"
        "Probe parallel: {probe_parallel}\n"
        "Action timeout: {action_timeout:g}s\n"
        "Probe timeout: {probe_timeout:g}s\n"
        "Auto sync: {auto_sync}\n"
        "Exclude patterns: {excludes}"
    )

    WARNING_STATUS_TTL_INVALID = "Ignoring invalid FRPFLEET_STATUS_TTL value '{value}'."
    WARNING_CONFIG_DIR_MISSING = "Config directory unavailable: {reason}"
    WARNING_FILE_SKIPPED = "Skipping {path}: {reason}"
    WARNING_SKIPPED_LINE = "Skipped {detail}"
    WARNING_INDEX_UNAVAILABLE = "Index unavailable ({reason}); scanning config files directly."
    WARNING_INDEX_RESET = "Index unreadable ({reason}); recreating it from the config files."
    WARNING_PRESETS_CORRUPT = "Ignoring unreadable presets file {path}."
    WARNING_STATUS_REFRESH_FAILED = "Status refresh failed; keeping the previous snapshot: {reason}"
    WARNING_STATUS_PERSIST_FAILED = "Cannot write status cache {path}: {reason}"
    WARNING_STATUS_STALE = "Stale: showing the last snapshot while it refreshes."
    WARNING_BATCH_CANCELLED = "Cancelled after {done} of {total} item(s)."

    LABEL_SUCCEEDED = "Succeeded"
    LABEL_FAILED = "Failed"
    LABEL_REACHABLE = "Reachable"
    LABEL_UNREACHABLE = "Unreachable"
    LABEL_MISSING = "missing"
    LABEL_STALE = "stale"
    LABEL_UNINDEXED = "unindexed"

    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_PATH = "Path"
    TABLE_HEADER_TYPE = "Type"
    TABLE_HEADER_SERVER = "Server"
    TABLE_HEADER_BIND_PORT = "Bind port"
    TABLE_HEADER_PROXIES = "Proxies"
    TABLE_HEADER_ITEM = "Item"
    TABLE_HEADER_REASON = "Reason"
    TABLE_HEADER_KEY = "Key"
    TABLE_HEADER_VALUE = "Value"
    TABLE_HEADER_COUNT = "Count"
    TABLE_HEADER_NAME = "Name"
    TABLE_HEADER_FILTERS = "Filters"
    TABLE_HEADER_FIELD = "Field"
    TABLE_HEADER_OLD = "Old"
    TABLE_HEADER_NEW = "New"
    TABLE_HEADER_BACKUP = "Backup"
    TABLE_HEADER_SAVED = "Saved"
    TABLE_HEADER_SIZE = "Size"
