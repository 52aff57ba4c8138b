# sensorhub

sensorhub is a monitoring service for an embedded Linux board that has a TMP102
temperature sensor and an APDS9301 ambient-light sensor on the I2C bus `/dev/i2c-2`.
The service runs several workers as threads in one process. The workers pass messages
to each other through an in-process `MessageBus`:

- **logger** (`sensorhub.logger.LoggingWorker`): truncates the log file and writes a
  header to it. After that it appends every message it receives and echoes each one to
  stdout.
- **temperature worker** (`sensorhub.temp_sensor.TempWorker`): resets the TMP102, sets
  its alert thresholds (20 °C and 30 °C) and runs a register self-test. It then reads
  the temperature on timer ticks and marks each reading normal, too hot or too cold.
- **lux worker** (`sensorhub.lux_sensor.LuxWorker`): self-tests the APDS9301 and reads
  both light channels. It computes lux and marks the level as night (100 lux or less)
  or day.
- **socket server** (`sensorhub.socket_server.SocketWorker`): listens on TCP port 8080.
  It serves one connection at a time and forwards temperature and lux requests to the
  sensor workers. It waits up to two seconds for their answer.
- **supervisor** (`sensorhub.app.Application`): starts the workers and drives a
  250 ms sampling timer. Every ten seconds it checks each worker's heartbeat. When a
  worker has gone quiet it lights the matching user LED through `/sys/class/gpio`. A
  sensor that failed is retried every five seconds, at most ten times.

## Installation

```
pip install .
```

## Running the service

```
sensorhub [LOGFILE]
```

If you leave out `LOGFILE`, the log is written to `./LogFile.txt`. The file is
truncated at start-up.

Sending `SIGUSR1` or `SIGUSR2` asks the workers to stop. The supervisor then sends an
exit request to the socket server. The logger keeps running until the other workers
have exited. When no worker is left, the supervisor plays a short LED animation and
exits.

## Querying the service

```
sensorhub-client [tempc|tempf|tempk|lux] [HOST]
```

The default query is `tempc`, and any unknown choice also means `tempc`. The default
host is `192.168.50.122`, on port 8080.

The client sends one request and prints the reading it gets back. It then reports what
the status number means:

- for temperature: normal, too hot or too cold;
- for lux: day or night.

## Library use

- `sensorhub.i2c.I2CBus(path, address)` opens an I2C character device and selects a
  slave address. It provides `write`, `read` and `close`, and raises `I2CError` on
  failure.
- `sensorhub.temp_sensor.Tmp102(device)` and `sensorhub.lux_sensor.Apds9301(device)`
  give register-level access to the sensors over any object that has `write(bytes)` and
  `read(count)`.
- `sensorhub.lux_sensor.compute_lux(ch0, ch1)` applies the datasheet lux formula to the
  raw channel counts. `day_state(lux)` classifies the result.
- `sensorhub.temp_sensor.convert(celsius, unit)` converts a Celsius reading to another
  unit. `format_temperature` and `warning_for` format and classify a reading.
- `sensorhub.messaging.MessageBus` routes `sensorhub.defines.Message` objects between
  bounded per-worker queues. `log_error` reports an error locally, to the logger, or to
  both.
- `sensorhub.logger.log_message(path, message)` appends a formatted entry to a log file.
- `sensorhub.socket_server.Request` packs and unpacks the fixed-size record exchanged
  with clients.

## Limitations

- The sensor workers need the real devices. If `/dev/i2c-2` cannot be opened or a
  self-test fails, the worker is retried and, after ten failures, it stops.
- The LEDs are driven by writing to `/sys/class/gpio`. On a machine without that
  interface the writes fail, and each failure is reported on stderr.
- Messages travel only between threads in one process; other processes cannot send to
  or read the workers' queues.

## Running the tests

```
pip install .[test]
pytest
```