"""
Tests for tracing and metrics helpers.
"""

import pytest
from unittest.mock import MagicMock, patch

from face_auth import observability
from face_auth.observability import (
    get_trace_context,
    record_enrollment_metrics,
    record_recognition_metrics,
    trace_function,
)


class TestTraceFunction:
    """Test cases for the trace_function decorator."""

    def test_sync_passthrough_without_tracer(self):
        """Test decorated functions run unchanged when tracing is off."""
        @trace_function("add")
        def add(a, b):
            return a + b

        with patch.object(observability, 'tracer', None):
            assert add(2, 3) == 5
        assert add.__name__ == "add"

    @pytest.mark.asyncio
    async def test_async_span_records_failure(self):
        """Test exceptions are recorded on the span and re-raised."""
        mock_tracer = MagicMock()
        span = mock_tracer.start_as_current_span.return_value.__enter__.return_value

        @trace_function("fails")
        async def fails():
            raise RuntimeError("boom")

        with patch.object(observability, 'tracer', mock_tracer):
            with pytest.raises(RuntimeError):
                await fails()

        mock_tracer.start_as_current_span.assert_called_once_with("fails")
        span.record_exception.assert_called_once()
        span.set_attribute.assert_any_call("success", False)


class TestMetricsRecording:
    """Test cases for enrollment and recognition metrics."""

    def test_no_op_without_setup(self):
        """Test recording before setup does nothing."""
        with patch.object(observability, 'enrollment_counter', None), \
                patch.object(observability, 'recognition_counter', None):
            record_enrollment_metrics(True, 0.1, "1")
            record_recognition_metrics(False, 0.1, None, "distance")

    def test_recognition_metrics(self):
        """Test recognition counters and the distance histogram are updated."""
        counter, duration, histogram = MagicMock(), MagicMock(), MagicMock()

        with patch.object(observability, 'recognition_counter', counter), \
                patch.object(observability, 'request_duration', duration), \
                patch.object(observability, 'recognition_score_histogram', histogram):
            record_recognition_metrics(True, 0.02, 0.4, "distance")

        counter.add.assert_called_once_with(1, {"operation": "recognition", "known": "true", "mode": "distance"})
        histogram.record.assert_called_once_with(0.4, {"known": "true"})

    def test_enrollment_metrics(self):
        """Test rejected enrollments are tagged with their reason."""
        counter, duration = MagicMock(), MagicMock()

        with patch.object(observability, 'enrollment_counter', counter), \
                patch.object(observability, 'request_duration', duration):
            record_enrollment_metrics(False, 0.05, "2", rejection="duplicate_of_other")

        attributes = counter.add.call_args[0][1]
        assert attributes["accepted"] == "false"
        assert attributes["rejection"] == "duplicate_of_other"

    def test_trace_context_outside_span(self):
        """Test no trace ids are reported outside a recording span."""
        assert get_trace_context() == {}
