"""
Tests for project file loading and validation.
"""

import pytest
import yaml

from infra_orchestrator.exceptions import ConfigurationError
from infra_orchestrator.loader import ProjectLoader


def write_project(tmp_path, document):
    path = tmp_path / 'infra-orchestrate.yaml'
    path.write_text(yaml.safe_dump(document, sort_keys=False))
    return path


def valid_document():
    return {
        'version': '1',
        'project': 'infra-demo',
        'environment': 'staging',
        'targets': [
            {
                'id': 'aws',
                'provider': 'aws',
                'workdir': 'terraform/aws',
                'region': 'us-east-1',
                'region_env': 'AWS_DEFAULT_REGION',
                'credentials': ['AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY'],
                'variables': {'instance_type': 't3.micro'},
                'configuration': {
                    'playbook': 'ansible/site.yml',
                    'hosts_output': 'public_ips',
                    'user': 'ec2-user',
                },
                'resources': {'instance_class': 'm5_large'},
            },
            {
                'id': 'oci',
                'workdir': 'terraform/oci',
                'depends_on': ['aws'],
                'policy': 'continue_on_error',
            },
        ],
        'replication': {'method': 'sync', 'primary': 'aws', 'secondary': 'oci'},
        'budget': {'warning': 40, 'critical': 80},
    }


class TestProjectLoader:

    def test_valid_project(self, tmp_path):
        path = write_project(tmp_path, valid_document())

        project = ProjectLoader(tmp_path).load(path)

        assert project.project == 'infra-demo'
        assert project.environment == 'staging'
        assert [t.id for t in project.targets] == ['aws', 'oci']
        aws = project.target('aws')
        assert aws.workdir == tmp_path.resolve() / 'terraform' / 'aws'
        assert aws.child_env() == {'AWS_DEFAULT_REGION': 'us-east-1'}
        assert aws.configuration.hosts_output == 'public_ips'
        oci = project.target('oci')
        assert oci.provider == 'oci'
        assert oci.depends_on == ['aws']
        assert project.reports_dir == tmp_path.resolve() / 'reports'
        assert project.budget == {'warning': 40, 'critical': 80}

    def test_cli_overrides(self, tmp_path):
        path = write_project(tmp_path, valid_document())

        project = ProjectLoader(tmp_path).load(path, environment='production', project='other')

        assert project.environment == 'production'
        assert project.project == 'other'

    def test_collects_every_error(self, tmp_path):
        document = valid_document()
        document['version'] = '9'
        document['environment'] = 'qa'
        document['targets'][1]['policy'] = 'retry_forever'
        document['targets'][1]['colour'] = 'blue'
        path = write_project(tmp_path, document)

        with pytest.raises(ConfigurationError) as exc_info:
            ProjectLoader(tmp_path).load(path)

        paths = {e.path for e in exc_info.value.errors}
        assert paths == {'version', 'environment', 'targets[1].policy', 'targets[1].colour'}

    def test_unknown_top_level_field(self, tmp_path):
        document = valid_document()
        document['regions'] = ['us-east-1']

        with pytest.raises(ConfigurationError, match="Unknown field 'regions'"):
            ProjectLoader(tmp_path).validate(document)

    def test_duplicate_target_ids(self, tmp_path):
        document = valid_document()
        document['targets'][1]['id'] = 'aws'
        document['targets'][1]['depends_on'] = []

        with pytest.raises(ConfigurationError, match="Duplicate target id 'aws'"):
            ProjectLoader(tmp_path).validate(document)

    def test_unknown_dependency(self, tmp_path):
        document = valid_document()
        document['targets'][1]['depends_on'] = ['gcp']

        with pytest.raises(ConfigurationError, match="Unknown dependency 'gcp'"):
            ProjectLoader(tmp_path).validate(document)

    def test_targets_required(self, tmp_path):
        with pytest.raises(ConfigurationError, match="'targets'"):
            ProjectLoader(tmp_path).validate({'version': '1'})

    def test_explicit_steps_validated(self, tmp_path):
        document = valid_document()
        document['targets'][1]['steps'] = [
            {'name': 'hello', 'command': ['echo', 'hi']},
            {'name': 'hello', 'command': 'echo hi', 'output_capture': 'xml'},
        ]

        with pytest.raises(ConfigurationError) as exc_info:
            ProjectLoader(tmp_path).validate(document)

        messages = [e.message for e in exc_info.value.errors]
        assert "Duplicate step name 'hello'" in messages
        assert "'command' must be a non-empty list of strings" in messages
        assert "'output_capture' must be 'text' or 'json'" in messages

    def test_retry_mapping_fields_validated(self, tmp_path):
        document = valid_document()
        document['targets'][1]['steps'] = [
            {'name': 'negative', 'command': ['true'], 'retries': {'max_attempts': 2, 'backoff_ms': -5}},
            {'name': 'quoted', 'command': ['true'], 'retries': {'max_attempts': '3'}},
            {'name': 'extra', 'command': ['true'], 'retries': {'attempts': 3, 'backoff_multiplier': 0}},
            {'name': 'codes', 'command': ['true'], 'retries': {'retryable_codes': [1, 'two']}},
        ]

        with pytest.raises(ConfigurationError) as exc_info:
            ProjectLoader(tmp_path).validate(document)

        errors = {e.path: e.message for e in exc_info.value.errors}
        base = 'targets[1].steps'
        assert errors[f'{base}[0].retries.backoff_ms'] == "'backoff_ms' must be an integer >= 0"
        assert errors[f'{base}[1].retries.max_attempts'] == "'max_attempts' must be an integer >= 1"
        assert errors[f'{base}[2].retries.attempts'] == "Unknown retries key 'attempts'"
        assert errors[f'{base}[2].retries.backoff_multiplier'] == "'backoff_multiplier' must be a positive number"
        assert errors[f'{base}[3].retries.retryable_codes'] == "'retryable_codes' must be a list of integers"

    def test_retry_mapping_accepted(self, tmp_path):
        document = valid_document()
        document['targets'][1]['steps'] = [
            {'name': 'init', 'command': ['true'],
             'retries': {'max_attempts': 3, 'backoff_ms': 0, 'backoff_multiplier': 2.0, 'retryable_codes': [1]}},
        ]

        project = ProjectLoader(tmp_path).validate(document)

        assert project.targets[1].steps[0]['retries']['max_attempts'] == 3

    def test_replication_must_name_targets(self, tmp_path):
        document = valid_document()
        document['replication']['secondary'] = 'azure'

        with pytest.raises(ConfigurationError, match="'secondary' must name a target"):
            ProjectLoader(tmp_path).validate(document)

    def test_dr_test_section(self, tmp_path):
        document = valid_document()
        document['dr_test'] = {
            'trigger_failover': ['./failover.sh'],
            'rto_mode': 'simulated',
        }

        project = ProjectLoader(tmp_path).validate(document)

        assert project.dr_test.trigger_failover == ['./failover.sh']
        assert project.dr_test.simulate_failure is None
        assert project.dr_test.rto_mode == 'simulated'

    def test_budget_order(self, tmp_path):
        document = valid_document()
        document['budget'] = {'warning': 100, 'critical': 50}

        with pytest.raises(ConfigurationError, match="'warning' must not exceed 'critical'"):
            ProjectLoader(tmp_path).validate(document)

    def test_unreadable_yaml(self, tmp_path):
        path = tmp_path / 'broken.yaml'
        path.write_text("targets: [unclosed\n")

        with pytest.raises(ConfigurationError, match='Failed to load project file'):
            ProjectLoader(tmp_path).load(path)
