"""
Unit tests for the test runner script.
"""

import pytest
from unittest.mock import patch

import run_tests


@patch.dict('os.environ', {})
class TestRunTests:
    """Test the pytest command the runner builds."""

    @patch('run_tests.subprocess.run')
    def test_coverage_flags(self, mock_run):
        with patch('sys.argv', ['run_tests.py', '--coverage', '-v']):
            run_tests.main()

        cmd = mock_run.call_args[0][0]
        assert cmd[1:3] == ['-m', 'pytest']
        assert '-v' in cmd
        assert '--cov=coach_sequences' in cmd
        assert '--cov-report=term-missing' in cmd

    @patch('run_tests.subprocess.run')
    def test_keyword_without_coverage(self, mock_run):
        with patch('sys.argv', ['run_tests.py', '-k', 'window']):
            run_tests.main()

        cmd = mock_run.call_args[0][0]
        assert cmd[-2:] == ['-k', 'window']
        assert not any(arg.startswith('--cov') for arg in cmd)

    @patch('run_tests.subprocess.run')
    def test_failure_exits_non_zero(self, mock_run):
        mock_run.side_effect = run_tests.subprocess.CalledProcessError(1, ['pytest'])

        with patch('sys.argv', ['run_tests.py']):
            with pytest.raises(SystemExit) as exc_info:
                run_tests.main()

        assert exc_info.value.code == 1
