import pytest
import sys
import os
import csv
import json
from unittest.mock import MagicMock
from datetime import datetime, timezone

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from core.data_recorder import DataRecorder
from core.errors import RecordingError, SerialErrorType
from utils.data_models import Direction, ExportFormat, LogEntry


@pytest.fixture
def data_recorder(tmp_path):
    # 使用临时目录进行测试
    return DataRecorder(log_directory=tmp_path / "SerialLogs", error_logger=MagicMock())


def make_entry(entry_id, direction, data, port="COM1"):
    return LogEntry(
        id=entry_id,
        timestamp=datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc),
        direction=direction,
        data=data,
        display_text=data.decode("utf-8", errors="replace"),
        timestamp_text="07:08:09.123",
        port_name=port,
    )


class TestDataRecorder:
    def test_initialization(self, data_recorder):
        status = data_recorder.get_recording_status()
        assert not status.text_recording_active
        assert not status.raw_recording_active
        assert status.text_file_path is None

    def test_filename_sanitizes_port(self, data_recorder):
        now = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
        path = data_recorder.generate_recording_filename("/dev/tty:USB*0", "txt", now)
        assert path.name == "_dev_tty_USB_0_2024-05-06_07-08-09.txt"
        assert path.parent.is_dir()

    def test_filename_uses_timezone_offset(self, data_recorder):
        data_recorder.set_timezone_offset(60)
        now = datetime(2024, 5, 6, 23, 30, 0, tzinfo=timezone.utc)
        path = data_recorder.generate_recording_filename(None, "bin", now)
        assert path.name == "UNKNOWN_2024-05-07_00-30-00.bin"

    def test_start_stop_text_recording(self, data_recorder):
        path = data_recorder.start_text_recording("COM1")
        assert data_recorder.get_recording_status().text_recording_active
        assert data_recorder.get_recording_status().text_file_path == path

        timestamp = datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)
        assert data_recorder.record_text(Direction.RECEIVED, "hello␍␊", timestamp)
        assert data_recorder.record_text(Direction.SENT, "AT", timestamp)

        assert data_recorder.stop_text_recording() == path
        assert not data_recorder.get_recording_status().text_recording_active
        with open(path, encoding="utf-8") as f:
            assert f.read() == "[07:08:09.123] RX: hello␍␊\n[07:08:09.123] TX: AT\n"

    def test_start_twice_raises(self, data_recorder):
        data_recorder.start_raw_recording("COM1")
        with pytest.raises(RecordingError) as exc_info:
            data_recorder.start_raw_recording("COM1")
        assert exc_info.value.error_type is SerialErrorType.RECORDING_ACTIVE
        data_recorder.stop_all_recordings()

    def test_stop_is_idempotent(self, data_recorder):
        assert data_recorder.stop_text_recording() is None
        data_recorder.start_text_recording("COM1")
        assert data_recorder.stop_text_recording() is not None
        assert data_recorder.stop_text_recording() is None

    def test_raw_recording_is_byte_dump(self, data_recorder):
        path = data_recorder.start_raw_recording("COM1")
        data_recorder.record_raw(b"\x00\x01")
        data_recorder.record_raw(b"\xff")
        data_recorder.stop_raw_recording()
        with open(path, "rb") as f:
            assert f.read() == b"\x00\x01\xff"

    def test_record_without_session_is_noop(self, data_recorder):
        assert data_recorder.record_raw(b"abc")
        assert data_recorder.record_text(Direction.RECEIVED, "abc", datetime.now(timezone.utc))

    def test_write_error_is_counted_not_raised(self, data_recorder):
        data_recorder.start_raw_recording("COM1")
        broken = MagicMock()
        broken.write.side_effect = OSError("disk full")
        real_file = data_recorder.raw_session._file
        data_recorder.raw_session._file = broken

        assert data_recorder.record_raw(b"abc") is False
        assert data_recorder.raw_session.write_errors == 1
        data_recorder.error_logger.log_error.assert_called()

        data_recorder.raw_session._file = real_file
        data_recorder.stop_raw_recording()

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        recorder = DataRecorder(log_directory=blocker / "logs")
        with pytest.raises(RecordingError):
            recorder.start_text_recording("COM1")
        assert not recorder.get_recording_status().text_recording_active

    def test_auto_recordings(self, data_recorder):
        data_recorder.set_auto_recording(text=True, raw=False)
        started = data_recorder.start_auto_recordings("COM7")
        assert len(started) == 1
        status = data_recorder.get_recording_status()
        assert status.text_recording_active and not status.raw_recording_active
        data_recorder.stop_all_recordings()


class TestExport:
    @pytest.fixture
    def entries(self):
        return [
            make_entry(1, Direction.SENT, b"AT\r\n"),
            make_entry(2, Direction.RECEIVED, b'OK "quoted"'),
        ]

    def test_export_txt(self, data_recorder, entries, tmp_path):
        target = tmp_path / "out" / "log.txt"
        assert data_recorder.export_logs(entries, target, ExportFormat.TXT, 0)
        lines = target.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "Serial Debug Terminal - Log Export"
        assert lines[1].startswith("Generated: ")
        assert lines[2] == "=" * 60
        assert lines[4] == "[07:08:09.123] TX: AT"
        assert lines[-1] == '[07:08:09.123] RX: OK "quoted"'

    def test_export_csv(self, data_recorder, entries, tmp_path):
        target = tmp_path / "log.csv"
        assert data_recorder.export_logs(entries, target, ExportFormat.CSV, 120)
        with open(target, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == ["timestamp", "direction", "port", "data"]
        assert rows[1] == ["2024-05-06 09:08:09.123", "Sent", "COM1", "AT\r\n"]
        assert rows[2][3] == 'OK "quoted"'

    def test_export_json(self, data_recorder, entries, tmp_path):
        target = tmp_path / "log.json"
        assert data_recorder.export_logs(entries, target, ExportFormat.JSON)
        exported = json.loads(target.read_text(encoding="utf-8"))
        assert [e["id"] for e in exported] == [1, 2]
        assert exported[0]["data"] == "41540d0a"
        assert exported[0]["direction"] == "Sent"

    def test_export_failure_returns_false(self, data_recorder, entries, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert not data_recorder.export_logs(entries, blocker / "log.txt", ExportFormat.TXT)
        data_recorder.error_logger.log_error.assert_called()
