# wings

Building blocks for a node daemon that runs game servers inside Docker
containers:

- **Node configuration** (`wings.config`): a typed configuration tree with
  defaults, loaded from and written back to YAML, and held as a thread-safe
  process-wide instance.
- **Host setup** (`wings.system_setup`): reading the distribution ID,
  making sure the service user and data directories exist, writing a
  logrotate file and settling on a timezone.
- **Docker settings** (`wings.docker_config`): network, registry
  credentials, container log driver and memory overhead multipliers.
- **Server environments** (`wings.environment`): resource limits, port
  allocations, mounts, environment variables and resource statistics for a
  server, plus the `ProcessEnvironment` protocol an environment implements.
- **Container statistics** (`wings.docker.stats`): memory and CPU
  calculations on Docker stats samples, and `StatsMixin` for uptime and
  resource polling.
- **Events** (`wings.events`): a small publish/subscribe bus whose
  messages are JSON encoded `Event` objects.
- **Progress tracking** (`wings.progress`): a byte counter that renders a
  text progress bar.
- **Console logging** (`wings.cli_log`): a `logging.Handler` that prints
  aligned, optionally coloured log lines with their structured fields.

## Configuration

```python
from wings.config import new_at_path, set_config, get_config, write_to_disk, from_file

cfg = new_at_path("/etc/pterodactyl/config.yml")   # every default filled in
cfg.api.port                                       # 8080
cfg.system.sftp.port                               # 2022
cfg.system.states_path                             # /var/lib/pterodactyl/states.json
set_config(cfg)

write_to_disk(get_config())                        # YAML, mode 0600
from_file("/etc/pterodactyl/config.yml")           # load and make it current
```

`get_config()` hands back a copy. Change the live configuration with
`update_config(callback)`: the callback receives the current
`Configuration` and edits it in place. When debug mode was switched on
with `set_debug_via_flag(True)`, it is never written to disk.
`jwt_secret()` returns the authentication token as bytes for signing.

## Host setup

`wings.system_setup` works on the configuration that is currently set:

- `get_system_name()` returns the `ID` from `/etc/os-release`.
- `ensure_pterodactyl_user()` looks up or creates the system user with
  `useradd`, or `addgroup`/`adduser` on Alpine, and records its uid and gid.
- `configure_directories()` creates the root, data, archive and backup
  directories.
- `enable_log_rotation()` writes `/etc/logrotate.d/wings` when the
  directory exists and has no such file. `render_logrotate(system)`
  returns the text it writes.
- `configure_timezone()` takes the timezone from the configuration, `TZ`,
  `/etc/timezone` or `timedatectl`, falling back to UTC, and validates it.

## Memory overhead

```python
from wings.docker_config import Overhead

Overhead().get_multiplier(1024)   # 1.15 – up to 2048 MB
Overhead().get_multiplier(3000)   # 1.10 – up to 4096 MB
Overhead().get_multiplier(8192)   # 1.05 – anything larger
```

With `override=True` the `multipliers` table is checked from the smallest
memory bound upwards. If no bound fits, `default_multiplier` is used.

## Server limits

```python
from wings.environment import Limits

limits = Limits(memory_limit=1024, swap=0, cpu_limit=200)
limits.converted_cpu_limit()     # 200000
limits.as_container_resources()  # the resource block for Docker
```

The memory and process figures read the global configuration, so call
`set_config` first. `Allocations.bindings()`, `docker_bindings()` and
`exposed()` turn a server's IP and port mappings into Docker's port map
forms.

## Events

`Bus.on(sink)` registers a callable and `Bus.off(sink)` removes it.
`Bus.publish(topic, data)` sends a JSON encoded event to every callable.
A namespaced topic such as `"backup completed:1234"` is published under
`"backup completed"`. `decode(data)` turns a received message back into an
`Event` with `topic` and `data`.

## Progress

```python
from wings.progress import Progress

p = Progress(1000)
p.write(b" " * 100)
p.render(25)   # '[==                       ] 100 B / 1000 B'
```

## Console logging

```python
import logging, sys
from wings.cli_log import CliHandler

logging.getLogger().addHandler(CliHandler(sys.stderr, use_colors=True))
logging.getLogger(__name__).info(
    "loading configuration", extra={"fields": {"path": "/etc/pterodactyl/config.yml"}}
)
```

Colours are used only when the stream is a terminal. An exception given as
the `error` field is followed by its traceback.

## What this package does not do

The package has no Docker Engine API client and no concrete Docker
environment. `ProcessEnvironment` describes the interface, but nothing here
creates, starts, stops, attaches to or removes containers, and nothing
pulls images. `StatsMixin` expects its host class to supply `id`, a
`client` with `container_inspect` and `container_stats`, `state()` and
`events()`. There is also no command to run, no HTTP API or SFTP server,
and no link to a Panel.

## Tests

The test suite uses pytest and is installed with the `test` extra.