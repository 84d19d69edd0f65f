import logging
import signal

import pytest

from datapup import cli
from datapup.listener import Service


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda signum, handler: None)


def test_bind_failure_exits_with_status_1(caplog):
    with pytest.raises(SystemExit) as info:
        cli.main(["--address", "nonsense"])
    assert info.value.code == 1
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_final_totals_are_logged(monkeypatch, caplog):
    caplog.set_level(logging.INFO)

    def fake_listen(self):
        self.aggregator.handle_datagram("b:2\na:1")

    monkeypatch.setattr(Service, "listen", fake_listen)
    cli.main(["--address", "127.0.0.1:0"])

    messages = [r.getMessage() for r in caplog.records]
    assert messages[-2:] == ["final total a: 1", "final total b: 2"]


def test_no_metrics_received(monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    monkeypatch.setattr(Service, "listen", lambda self: None)
    cli.main([])
    assert caplog.records[-1].getMessage() == "no metrics received"
