"""
End-to-end tests of the CLI commands.

Targets use explicit steps that run short Python snippets instead of the
provisioner, so every command runs for real without cloud access.
"""

import json
import sys

import pytest
import yaml

from infra_orchestrator.cli.main import create_parser, main
from infra_orchestrator.pipeline import builders
from infra_orchestrator.pipeline.steps import Step


def py(code, *args):
    return [sys.executable, '-c', code, *args]


def write_project(tmp_path, targets, **extra):
    document = {'version': '1', 'project': 'infra-demo', 'environment': 'dev', 'targets': targets}
    document.update(extra)
    path = tmp_path / 'infra-orchestrate.yaml'
    path.write_text(yaml.safe_dump(document, sort_keys=False))
    return path


def read_report(reports_dir, suffix='json'):
    reports = sorted(reports_dir.glob(f'session-*.{suffix}'))
    assert len(reports) == 1
    if suffix == 'json':
        return json.loads(reports[0].read_text())
    return reports[0].read_text()


def aws_target():
    return {
        'id': 'aws',
        'workdir': '.',
        'steps': [{
            'name': 'outputs',
            'command': py("import json; print(json.dumps({'ip': {'value': '10.0.0.1', 'type': 'string'}}))"),
            'output_capture': 'json',
        }],
    }


def marking_target(target_id, **extra):
    """Target whose only step leaves a `ran-<id>` file in the project directory."""
    code = "import sys; open('ran-' + sys.argv[1], 'w').close()"
    return dict({'id': target_id, 'workdir': '.', 'steps': [{'name': 'mark', 'command': py(code, target_id)}]},
                **extra)


class TestParser:

    def test_subcommands(self):
        parser = create_parser()

        args = parser.parse_args(['dr-test', '--rto', '30', '--replication', 'sync', '--dry-run'])
        assert (args.command, args.rto, args.replication, args.dry_run) == ('dr-test', 30, 'sync', True)

        args = parser.parse_args(['cost-compare', '--free-tier', '--duration', '24'])
        assert args.free_tier and args.duration == 24
        assert (args.provider_a, args.provider_b) == ('aws', 'oci')

        args = parser.parse_args(['deploy', '--target', 'aws', '--target', 'oci', '--skip-target', 'gcp'])
        assert (args.target, args.skip_target) == (['aws', 'oci'], ['gcp'])

    def test_invalid_environment_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(['deploy', '--environment', 'qa'])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert 'infra-orchestrate' in capsys.readouterr().out


class TestDeploy:

    def test_downstream_target_sees_upstream_outputs(self, tmp_path):
        oci = {
            'id': 'oci',
            'workdir': '.',
            'depends_on': ['aws'],
            'steps': [{'name': 'echo', 'command': py("import sys; print('peer', sys.argv[1])",
                                                     '${targets.aws.outputs.ip}')}],
        }
        config = write_project(tmp_path, [aws_target(), oci])

        exit_code = main(['deploy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        report = read_report(tmp_path / 'reports')
        assert report['overall_status'] == 'success'
        assert [p['target_id'] for p in report['pipelines']] == ['aws', 'oci']
        assert report['pipelines'][0]['outputs'] == {'ip': '10.0.0.1'}
        assert 'peer 10.0.0.1' in report['pipelines'][1]['results'][0]['captured_output']
        assert (tmp_path / 'logs').is_dir()

    def test_partial_failure_exit_code(self, tmp_path):
        oci = {
            'id': 'oci',
            'workdir': '.',
            'steps': [
                {'name': 'init', 'command': py('pass')},
                {'name': 'apply', 'command': py('import sys; sys.exit(3)')},
                {'name': 'outputs', 'command': py('pass')},
            ],
        }
        config = write_project(tmp_path, [aws_target(), oci])

        exit_code = main(['deploy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports'),
                          '--format', 'csv'])

        assert exit_code == 2
        report = read_report(tmp_path / 'reports')
        assert report['overall_status'] == 'partial'
        statuses = [r['status'] for r in report['pipelines'][1]['results']]
        assert statuses == ['passed', 'failed', 'skipped']
        assert 'oci,aborted' in read_report(tmp_path / 'reports', 'csv')

    def test_dry_run_skips_mutating_steps(self, tmp_path):
        target = aws_target()
        target['steps'].append({'name': 'apply', 'command': py('import sys; sys.exit(1)'), 'mutating': True})
        config = write_project(tmp_path, [target])

        exit_code = main(['deploy', '--dry-run', '--config', str(config), '--reports-dir', str(tmp_path / 'r')])

        assert exit_code == 0
        report = read_report(tmp_path / 'r')
        assert report['dry_run'] is True
        assert report['pipelines'][0]['results'][1]['status'] == 'skipped'

    def test_invalid_retry_settings_reported(self, tmp_path):
        target = aws_target()
        target['steps'][0]['retries'] = {'max_attempts': 2, 'backoff_ms': -5}
        config = write_project(tmp_path, [target])

        exit_code = main(['deploy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        error = read_report(tmp_path / 'reports')['error']
        assert error['type'] == 'configuration_error'
        assert error['context']['errors'][0]['path'] == 'targets[0].steps[0].retries.backoff_ms'

    def test_target_selection_includes_dependencies(self, tmp_path):
        config = write_project(tmp_path, [marking_target('aws'), marking_target('oci', depends_on=['aws']),
                                          marking_target('edge')])

        exit_code = main(['deploy', '--config', str(config), '--target', 'oci',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        assert [p['target_id'] for p in read_report(tmp_path / 'reports')['pipelines']] == ['aws', 'oci']
        assert not (tmp_path / 'ran-edge').exists()

    def test_skip_target(self, tmp_path):
        config = write_project(tmp_path, [marking_target('aws'), marking_target('oci')])

        exit_code = main(['deploy', '--config', str(config), '--skip-target', 'aws',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        assert [p['target_id'] for p in read_report(tmp_path / 'reports')['pipelines']] == ['oci']
        assert not (tmp_path / 'ran-aws').exists()

    def test_skipping_a_needed_target_rejected(self, tmp_path):
        config = write_project(tmp_path, [marking_target('aws'), marking_target('oci', depends_on=['aws'])])

        exit_code = main(['deploy', '--config', str(config), '--skip-target', 'aws',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        error = read_report(tmp_path / 'reports')['error']
        assert error['context']['errors'][0]['message'] == "Target 'oci' needs skipped target 'aws'"
        assert not (tmp_path / 'ran-oci').exists()

    def test_unknown_selected_target_rejected(self, tmp_path):
        config = write_project(tmp_path, [marking_target('aws')])

        exit_code = main(['deploy', '--config', str(config), '--target', 'aws-typo',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        error = read_report(tmp_path / 'reports')['error']
        assert error['context']['errors'][0]['message'] == "Unknown target 'aws-typo'"
        assert not (tmp_path / 'ran-aws').exists()

    def test_missing_executable_fails_before_execution(self, tmp_path):
        aws = marking_target('aws')
        oci = dict(marking_target('oci'), steps=[{'name': 'init', 'command': ['infra-orchestrator-missing-tool']}])
        config = write_project(tmp_path, [aws, oci])

        exit_code = main(['deploy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        assert not (tmp_path / 'ran-aws').exists()
        errors = read_report(tmp_path / 'reports')['error']['context']['errors']
        assert errors == [{
            'message': "Executable 'infra-orchestrator-missing-tool' not found (needed by step 'init')",
            'path': 'targets.oci',
        }]

    def test_missing_project_file(self, tmp_path):
        exit_code = main(['deploy', '--config', str(tmp_path / 'missing.yaml'),
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        report = read_report(tmp_path / 'reports')
        assert report['overall_status'] == 'failed'
        assert report['error']['type'] == 'configuration_error'
        assert report['pipelines'] == []

    def test_missing_credentials_fail_before_execution(self, tmp_path, monkeypatch):
        monkeypatch.delenv('INFRA_ORCHESTRATOR_TEST_TOKEN', raising=False)
        target = aws_target()
        target['credentials'] = ['INFRA_ORCHESTRATOR_TEST_TOKEN']
        target['steps'][0]['command'] = py("open('ran', 'w').close()")
        config = write_project(tmp_path, [target])

        exit_code = main(['deploy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        assert not (tmp_path / 'ran').exists()
        error = read_report(tmp_path / 'reports')['error']
        assert error['context']['errors'][0]['message'] == \
            "Credential 'INFRA_ORCHESTRATOR_TEST_TOKEN' is not set in the environment"


class TestDestroy:

    def test_dependents_torn_down_first(self, tmp_path, monkeypatch):
        def recording_steps(target, project, environment):
            code = "import sys; open('order', 'a').write(sys.argv[1] + '\\n')"
            return [Step(name='destroy', command=py(code, target.id), mutating=True)]

        monkeypatch.setattr(builders, 'destroy_steps', recording_steps)
        oci = dict(aws_target(), id='oci', depends_on=['aws'])
        config = write_project(tmp_path, [aws_target(), oci])

        exit_code = main(['destroy', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        assert (tmp_path / 'order').read_text().split() == ['oci', 'aws']
        report = read_report(tmp_path / 'reports')
        assert report['command'] == 'destroy'
        assert [p['target_id'] for p in report['pipelines']] == ['aws', 'oci']

    def test_target_selection_includes_dependents(self, tmp_path, monkeypatch):
        def recording_steps(target, project, environment):
            code = "import sys; open('ran-' + sys.argv[1], 'w').close()"
            return [Step(name='destroy', command=py(code, target.id), mutating=True)]

        monkeypatch.setattr(builders, 'destroy_steps', recording_steps)
        config = write_project(tmp_path, [marking_target('aws'), marking_target('oci', depends_on=['aws']),
                                          marking_target('edge')])

        exit_code = main(['destroy', '--config', str(config), '--target', 'aws',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        assert [p['target_id'] for p in read_report(tmp_path / 'reports')['pipelines']] == ['aws', 'oci']
        assert not (tmp_path / 'ran-edge').exists()


class TestDRTest:

    def test_without_project_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        exit_code = main(['dr-test', '--dry-run', '--simulate-rto', '--rto', '5',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        report = read_report(tmp_path / 'reports')
        assert report['test_mode'] is True
        assert [p['target_id'] for p in report['pipelines']] == ['dr-test']
        assert report['replication_config']['rto_minutes'] == 5
        assert report['rto_measurement']['source'] == 'simulated'

    def test_timed_failover_with_project(self, tmp_path):
        oci = dict(aws_target(), id='oci')
        config = write_project(
            tmp_path, [aws_target(), oci],
            replication={'method': 'async', 'rpo_minutes': 15, 'primary': 'aws', 'secondary': 'oci'},
            dr_test={
                'simulate_failure': py('pass'),
                'trigger_failover': py('import time; time.sleep(0.2)'),
                'verify_secondary': py('pass'),
            },
        )

        exit_code = main(['dr-test', '--config', str(config), '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        report = read_report(tmp_path / 'reports')
        assert [p['target_id'] for p in report['pipelines']] == ['aws', 'oci', 'dr-test']
        measurement = report['rto_measurement']
        assert measurement['source'] == 'timed'
        assert measurement['rto_achievement'] == 'achieved'
        assert measurement['actual_rto_seconds'] >= 0.2
        assert report['replication_config']['frequency'] == 'every 15 minutes'

    def test_unknown_primary_rejected(self, tmp_path):
        config = write_project(tmp_path, [marking_target('aws'), marking_target('oci')])

        exit_code = main(['dr-test', '--config', str(config), '--primary', 'awz',
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        error = read_report(tmp_path / 'reports')['error']
        assert error['context']['errors'][0]['message'] == "Unknown target 'awz'"
        assert not (tmp_path / 'ran-aws').exists()

    def test_invalid_replication_flags(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        exit_code = main(['dr-test', '--rto', '0', '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
        assert read_report(tmp_path / 'reports')['error']['type'] == 'configuration_error'


class TestCostCompare:

    def test_default_shapes(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        exit_code = main(['cost-compare', '--reports-dir', str(tmp_path / 'reports'), '--format', 'html'])

        assert exit_code == 0
        report = read_report(tmp_path / 'reports')
        comparison = report['cost_comparison']
        assert comparison['percentage_diff'] == 85.9
        assert comparison['absolute_diff'] == 59.38
        assert comparison['cheaper'] == 'oci'
        assert comparison['budget']['aws'] == 'warning'
        assert report['pipelines'] == []
        assert '85.9%' in read_report(tmp_path / 'reports', 'html')

    def test_project_resources_used(self, tmp_path):
        aws = dict(aws_target(), resources={'instance_class': 't3_micro', 'storage_gb': 20})
        oci = dict(aws_target(), id='oci', resources={'instance_class': 'vm_standard_e2_1_micro'})
        config = write_project(tmp_path, [aws, oci])

        exit_code = main(['cost-compare', '--free-tier', '--config', str(config),
                          '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 0
        comparison = read_report(tmp_path / 'reports')['cost_comparison']
        assert comparison['provider_a']['monthly_total'] == 0
        assert comparison['provider_b']['monthly_total'] == 0
        assert comparison['percentage_diff'] == 0.0

    def test_unknown_provider(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        exit_code = main(['cost-compare', '--provider-b', 'gcp', '--reports-dir', str(tmp_path / 'reports')])

        assert exit_code == 1
