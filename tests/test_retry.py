import pytest
from core.errors import ExternalServiceError, RateLimitError
from unittest.mock import Mock, patch
from utils.retry import NO_RETRY, RetryPolicy


class TestRetryPolicy:
    """Test suite for RetryPolicy"""

    @patch('utils.retry.random.uniform', return_value=0.0)
    def test_exponential_delay(self, mock_uniform):
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, jitter=0.3)

        assert [policy.delay(attempt) for attempt in [1, 2, 3]] == [1.0, 2.0, 4.0]
        mock_uniform.assert_called_with(0, 0.3)

    def test_jitter_is_bounded(self):
        policy = RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0.3)

        for _ in range(20):
            assert 0.5 <= policy.delay(1) <= 0.8

    def test_returns_first_success(self):
        fn = Mock(return_value="ok")

        assert RetryPolicy(3, 0.0, 0.0).call(fn, 1, key="value") == "ok"
        fn.assert_called_once_with(1, key="value")

    @patch('utils.retry.time.sleep')
    def test_retries_retryable_errors(self, mock_sleep):
        fn = Mock(side_effect=[RateLimitError("svc"), ExternalServiceError("svc", "503", retryable=True), "ok"])

        assert RetryPolicy(3, 1.0, 0.0).call(fn) == "ok"
        assert fn.call_count == 3
        assert [c[0][0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch('utils.retry.time.sleep')
    def test_reraises_last_error(self, mock_sleep):
        """Test the final retryable error surfaces once attempts run out"""
        errors = [RateLimitError("svc", "first"), RateLimitError("svc", "second")]
        fn = Mock(side_effect=errors)

        with pytest.raises(RateLimitError) as exc_info:
            RetryPolicy(2, 0.0, 0.0).call(fn)

        assert exc_info.value is errors[1]
        assert mock_sleep.call_count == 1

    @patch('utils.retry.time.sleep')
    def test_non_retryable_is_raised_immediately(self, mock_sleep):
        fn = Mock(side_effect=ExternalServiceError("svc", "404"))

        with pytest.raises(ExternalServiceError):
            RetryPolicy(5, 0.0, 0.0).call(fn)

        assert fn.call_count == 1
        mock_sleep.assert_not_called()

    def test_other_exceptions_propagate(self):
        fn = Mock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            RetryPolicy(3, 0.0, 0.0).call(fn)

        assert fn.call_count == 1

    def test_no_retry(self):
        fn = Mock(side_effect=RateLimitError("svc"))

        with pytest.raises(RateLimitError):
            NO_RETRY.call(fn)

        assert fn.call_count == 1
