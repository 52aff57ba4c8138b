"""Command-line client that asks the sensor hub for a temperature or light reading."""

from __future__ import annotations

import os
import socket
import sys

from sensorhub.defines import PORT, current_time
from sensorhub.socket_server import (
    LUX_WARNING_REQ,
    REQUEST_SIZE,
    TEMP_WARNING_REQ,
    Request,
)

DEFAULT_TARGET = "192.168.50.122"
RECEIVE_TIMEOUT = 2.0

_TEMP_CHOICES = {
    "tempc": (1, "Requesting Temperature in C"),
    "tempf": (2, "Requesting Temperature in F"),
    "tempk": (3, "Requesting Temperature in K"),
}

_TEMP_STATES = {
    0x00: "Temperature is Normal",
    0x01: "It's too hot",
    0x02: "It's too cold",
}
_LUX_STATES = {
    0x02: "It's Daytime",
    0x01: "It's Nighttime",
}


def build_request(choice: str | None) -> tuple[Request, int, str]:
    """Turn a command-line choice into (request, warning kind, announcement)."""
    if choice is None:
        return (
            Request("Temperature", 1),
            TEMP_WARNING_REQ,
            "No Argument - Requesting Temperature in C",
        )
    if choice in _TEMP_CHOICES:
        unit, announcement = _TEMP_CHOICES[choice]
        return Request("Temperature", unit), TEMP_WARNING_REQ, announcement
    if choice == "lux":
        return Request("Lux", 1), LUX_WARNING_REQ, "\nSending Lux Request\nRequesting Lux"
    return (
        Request("Temperature", 1),
        TEMP_WARNING_REQ,
        "Invalid Argument - Requesting Temperature in C",
    )


def describe_response(kind: int, num: int) -> str:
    """Explain the warning number the server sent back."""
    if kind == TEMP_WARNING_REQ:
        return _TEMP_STATES.get(num, "Temperature state couldn't be determined")
    if kind == LUX_WARNING_REQ:
        return _LUX_STATES.get(num, "Day or Night couldn't be determined")
    return "No valid warning acquired"


def _read_reply(conn: socket.socket) -> bytes:
    """Read one reply record; fewer bytes come back if the peer closes early."""
    chunks = []
    remaining = REQUEST_SIZE
    while remaining:
        chunk = conn.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def main(argv=None) -> int:
    """Send one request to the server and print the answer."""
    args = sys.argv[1:] if argv is None else list(argv)
    print("\nClient Started")

    if len(args) > 1:
        target = args[1]
        print(f"ip entered - trying to connect to: {target}")
    else:
        target = DEFAULT_TARGET
        print(f"No ip entered - trying to connect to default ip: {target}")

    request, kind, announcement = build_request(args[0] if args else None)
    print(announcement)

    try:
        socket.inet_pton(socket.AF_INET, target)
    except OSError:
        print("\nInvalid address/ Address not supported ")
        return 1

    try:
        conn = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError:
        print("\nSocket Creation Failed")
        return 1

    with conn:
        conn.settimeout(RECEIVE_TIMEOUT)
        try:
            conn.connect((target, PORT))
        except OSError:
            print("\nSocket Connection Failed")
            return 1

        print(f"\n\nClient Start with PID: {os.getpid()}")
        print(f"Time Stamp: *{current_time():.6f}*")
        print("IPC using Socket")
        print("No special resources being utilized")

        print(
            f"\n<{current_time():.6f}> Sending to Server *{request.text}* "
            f"and Unit: {request.num}"
        )
        try:
            conn.sendall(request.pack())
        except OSError:
            print("\nSocket Writing Failed")
            return 1

        stamp = current_time()
        try:
            data = _read_reply(conn)
        except OSError:
            print("\nSocket Reading Failed")
            return 1

    if not data:
        print("NULL Read")
    elif len(data) == REQUEST_SIZE:
        reply = Request.unpack(data)
        print(f"\n<{stamp:.6f}> String from Server\n{reply.text}")
        print(f"\n{describe_response(kind, reply.num)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())