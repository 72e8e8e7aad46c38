"""Tests for the command line entry point."""

import contextlib
import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import migrate


STORAGE = (
    '<ac:structured-macro ac:name="code"><ac:parameter ac:name="language">bash</ac:parameter>'
    '<ac:plain-text-body><![CDATA[echo "hello"]]></ac:plain-text-body></ac:structured-macro>'
)
VIEW = '<h2>Usage</h2><div class="code panel pdl"><pre>echo "hello"</pre></div>'


class TestCli(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.root = Path(self.temp_dir.name)
        self.storage_file = self.root / 'page.storage.xml'
        self.view_file = self.root / 'page.view.html'
        self.storage_file.write_text(STORAGE, encoding='utf-8')
        self.view_file.write_text(VIEW, encoding='utf-8')

    def _offline_args(self, *extra):
        return ['--storage-file', str(self.storage_file), '--view-file', str(self.view_file), *extra]

    def test_offline_conversion_writes_file(self):
        output_dir = self.root / 'out'

        exit_code = migrate.main(self._offline_args('--output-dir', str(output_dir), '--title', 'Shell Usage'))

        self.assertEqual(exit_code, 0)
        markdown = (output_dir / 'LOCAL' / 'Shell_Usage.md').read_text(encoding='utf-8')
        self.assertIn('## Usage', markdown)
        self.assertIn('```bash\necho "hello"\n```', markdown)

    def test_offline_dry_run_prints_markdown(self):
        stdout = io.StringIO()

        with contextlib.redirect_stdout(stdout):
            exit_code = migrate.main(self._offline_args('--dry-run', '--output-dir', str(self.root / 'out')))

        self.assertEqual(exit_code, 0)
        self.assertIn('title: page', stdout.getvalue())
        self.assertFalse((self.root / 'out').exists())

    def test_storage_without_view_is_rejected(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as context:
                migrate.main(['--storage-file', str(self.storage_file)])

        self.assertEqual(context.exception.code, 2)

    def test_online_mode_requires_connection_settings(self):
        stderr = io.StringIO()

        with contextlib.redirect_stderr(stderr):
            exit_code = migrate.main(['--page-id', '1001', '--output-dir', str(self.root / 'out')])

        self.assertEqual(exit_code, 2)
        self.assertIn('Configuration error', stderr.getvalue())

    def test_missing_config_file(self):
        with contextlib.redirect_stderr(io.StringIO()):
            exit_code = migrate.main(['--config', str(self.root / 'absent.yaml'), '--space', 'ENG'])

        self.assertEqual(exit_code, 2)

    def test_page_failures_give_exit_code_one(self):
        config_file = self.root / 'config.yaml'
        config_file.write_text(
            'confluence:\n'
            '  base_url: https://wiki.example.com\n'
            '  username: exporter\n'
            '  password: secret\n'
            f'export:\n  output_directory: {self.root / "out"}\n',
            encoding='utf-8'
        )
        report = {'exported': 0, 'failed': 1, 'macro_totals': {},
                  'errors': [{'page_id': '1001', 'code': 'FETCH_FAILED', 'message': 'not found'}]}

        with patch('migrate.ExportOrchestrator') as orchestrator_cls, \
                contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(io.StringIO()):
            orchestrator_cls.return_value.export_pages.return_value = report
            exit_code = migrate.main(['--config', str(config_file), '--page-id', '1001'])

        self.assertEqual(exit_code, 1)
        orchestrator_cls.return_value.export_pages.assert_called_once_with(['1001'])


if __name__ == '__main__':
    unittest.main()
