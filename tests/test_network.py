"""
Test network diagnostics
"""
import socket
import subprocess
from hads.utils import network
from hads.utils.network import is_port_open, is_reachable


class _Completed:
    def __init__(self, returncode):
        self.returncode = returncode


def test_reachable_uses_ping(monkeypatch):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _Completed(0)

    monkeypatch.setattr(network.shutil, 'which', lambda name: '/bin/ping')
    monkeypatch.setattr(network.subprocess, 'run', fake_run)

    assert is_reachable('192.168.1.101', timeout=3)
    assert calls == [['ping', '-c', '1', '-W', '3', '192.168.1.101']]


def test_unreachable_when_ping_fails(monkeypatch):
    monkeypatch.setattr(network.shutil, 'which', lambda name: '/bin/ping')
    monkeypatch.setattr(network.subprocess, 'run', lambda args, **kwargs: _Completed(1))

    assert not is_reachable('192.168.1.101')


def test_unreachable_on_ping_error(monkeypatch):
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, 5)

    monkeypatch.setattr(network.shutil, 'which', lambda name: '/bin/ping')
    monkeypatch.setattr(network.subprocess, 'run', fake_run)

    assert not is_reachable('192.168.1.101')


def test_tcp_probe_without_ping(monkeypatch):
    monkeypatch.setattr(network.shutil, 'which', lambda name: None)
    monkeypatch.setattr(network, '_tcp_echo_probe', lambda address, timeout: True)

    assert is_reachable('192.168.1.101')


def test_empty_address_unreachable():
    assert not is_reachable('')
    assert not is_port_open('', 22)


def test_invalid_port_closed():
    assert not is_port_open('127.0.0.1', 0)
    assert not is_port_open('127.0.0.1', 65536)


def test_port_open_on_listening_socket():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(('127.0.0.1', 0))
    server.listen(1)
    port = server.getsockname()[1]

    try:
        assert is_port_open('127.0.0.1', port, timeout=2)
    finally:
        server.close()


def test_port_closed_after_socket_released():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(('127.0.0.1', 0))
    port = server.getsockname()[1]
    server.close()

    assert not is_port_open('127.0.0.1', port, timeout=2)
