"""
Tests for ${...} variable substitution.
"""

import pytest

from infra_orchestrator.variables.substitution import VariableSubstitutor


@pytest.fixture
def variables():
    return VariableSubstitutor().build_variables(
        project={'name': 'infra-demo', 'environment': 'dev'},
        target={'id': 'aws', 'region': 'us-east-1', 'vars': {'instance_type': 't3.micro'}},
        steps={'outputs': {'status': 'passed', 'outputs': {'hosts': ['10.0.0.1', '10.0.0.2'], 'port': 22}}},
        targets={'aws': {'outputs': {'db_endpoint': 'db.example.com'}, 'state': 'completed'}},
    )


class TestVariableSubstitutor:

    def test_namespaces(self, variables):
        substitutor = VariableSubstitutor()

        result = substitutor.substitute(
            ['${project.name}-${project.environment}', '${target.vars.instance_type}',
             '${targets.aws.outputs.db_endpoint}', '${steps.outputs.status}'],
            variables,
        )

        assert result == ['infra-demo-dev', 't3.micro', 'db.example.com', 'passed']

    def test_lists_join_with_commas(self, variables):
        result = VariableSubstitutor().substitute('${steps.outputs.outputs.hosts},', variables)

        assert result == '10.0.0.1,10.0.0.2,'

    def test_numbers_and_booleans(self):
        substitutor = VariableSubstitutor()
        variables = substitutor.build_variables(target={'port': 22, 'public': True})

        assert substitutor.substitute('${target.port}:${target.public}', variables) == '22:true'

    def test_dollar_escape(self, variables):
        assert VariableSubstitutor().substitute('$${target.id}', variables) == '${target.id}'

    def test_undefined_raises(self, variables):
        with pytest.raises(ValueError, match='steps.plan.status'):
            VariableSubstitutor().substitute('${steps.plan.status}', variables)

    def test_unknown_namespace_is_undefined(self, variables):
        substitutor = VariableSubstitutor()

        result = substitutor.substitute('${env.HOME}', variables, track_undefined=False)

        assert result == '${env.HOME}'
        assert substitutor.undefined_vars == {'env.HOME'}
