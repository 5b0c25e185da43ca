"""
Rule Parser

Parses rule definitions from YAML and validates them against the live
ticket domain.
"""

import logging
import yaml
from typing import Dict, Any, List, Optional
from pathlib import Path
from pydantic import ValidationError as PydanticValidationError

from automation.models import (
    Rule,
    RuleCondition,
    RuleAction,
    ConditionField,
    ConditionOperator,
    ActionType,
    TicketDomain,
    ValidationResult,
    utc_now
)
from exceptions import RuleValidationError


logger = logging.getLogger("DeskPilotRuleParser")


def _format_pydantic_error(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}"
        for err in error.errors()
    )


class RuleParser:
    """
    Parse rule definitions from YAML format.
    """

    def __init__(self, domain: Optional[TicketDomain] = None):
        """
        Initialize the rule parser.

        Args:
            domain: Live value domain used by validate_rule
        """
        self.domain = domain
        self.valid_fields = set(f.value for f in ConditionField)
        self.valid_operators = set(op.value for op in ConditionOperator)
        self.valid_action_types = set(t.value for t in ActionType)

    def parse_yaml_file(self, file_path: str) -> Rule:
        """
        Parse rule from YAML file.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed Rule

        Raises:
            RuleValidationError: If parsing fails
        """
        try:
            with open(file_path, 'r') as f:
                yaml_content = yaml.safe_load(f)
        except FileNotFoundError:
            raise RuleValidationError(f"Rule file not found: {file_path}", component="RuleParser")
        except yaml.YAMLError as e:
            raise RuleValidationError(f"Invalid YAML syntax: {e}", component="RuleParser")

        if not yaml_content:
            raise RuleValidationError(f"Empty YAML file: {file_path}", component="RuleParser")

        return self.parse_dict(yaml_content)

    def parse_dict(self, data: Dict[str, Any]) -> Rule:
        """
        Parse rule from a dictionary.

        Args:
            data: Rule data as dictionary

        Returns:
            Parsed Rule

        Raises:
            RuleValidationError: If a required key is missing or a value is invalid
        """
        if not isinstance(data, dict):
            raise RuleValidationError("Rule definition must be a mapping", component="RuleParser")

        rule_id = data.get('id')
        if not rule_id:
            raise RuleValidationError("Rule 'id' is required", component="RuleParser")

        name = data.get('name')
        if not name:
            raise RuleValidationError("Rule 'name' is required", component="RuleParser", context={"rule_id": rule_id})

        conditions_data = data.get('trigger_conditions', data.get('conditions'))
        if not conditions_data:
            raise RuleValidationError("Rule 'trigger_conditions' are required", component="RuleParser", context={"rule_id": rule_id})
        conditions = self._parse_conditions(conditions_data)

        actions_data = data.get('actions')
        if not actions_data:
            raise RuleValidationError("Rule 'actions' are required", component="RuleParser", context={"rule_id": rule_id})
        actions = self._parse_actions(actions_data)

        now = utc_now()
        try:
            return Rule(
                id=str(rule_id),
                name=name,
                description=data.get('description', '') or '',
                trigger_conditions=conditions,
                actions=actions,
                is_active=data.get('is_active', data.get('enabled', True)),
                version=data.get('version', 1),
                created_at=data.get('created_at') or now,
                updated_at=data.get('updated_at') or now,
                last_executed_at=data.get('last_executed_at')
            )
        except PydanticValidationError as e:
            raise RuleValidationError(
                f"Invalid rule: {_format_pydantic_error(e)}",
                component="RuleParser",
                context={"rule_id": rule_id}
            )

    def _parse_conditions(self, conditions_data: Any) -> List[RuleCondition]:
        """Parse the ordered condition list."""
        if not isinstance(conditions_data, list):
            raise RuleValidationError("Conditions must be a list", component="RuleParser")
        return [self._parse_condition(cond) for cond in conditions_data]

    def _parse_condition(self, cond_data: Dict[str, Any]) -> RuleCondition:
        """Parse a single condition."""
        if not isinstance(cond_data, dict):
            raise RuleValidationError("Condition must be a mapping", component="RuleParser")

        field = cond_data.get('field')
        if not field:
            raise RuleValidationError("Condition 'field' is required", component="RuleParser")
        if field not in self.valid_fields:
            raise RuleValidationError(
                f"Invalid field: {field}. Must be one of: {sorted(self.valid_fields)}",
                component="RuleParser"
            )

        operator = cond_data.get('operator')
        if not operator:
            raise RuleValidationError("Condition 'operator' is required", component="RuleParser")
        if operator not in self.valid_operators:
            raise RuleValidationError(
                f"Invalid operator: {operator}. Must be one of: {sorted(self.valid_operators)}",
                component="RuleParser"
            )

        if 'value' not in cond_data:
            raise RuleValidationError("Condition 'value' is required", component="RuleParser")

        try:
            return RuleCondition(field=field, operator=operator, value=cond_data['value'])
        except PydanticValidationError as e:
            raise RuleValidationError(
                f"Invalid condition: {_format_pydantic_error(e)}",
                component="RuleParser",
                context={"condition": cond_data}
            )

    def _parse_actions(self, actions_data: Any) -> List[RuleAction]:
        """Parse the ordered action list."""
        if not isinstance(actions_data, list):
            raise RuleValidationError("Actions must be a list", component="RuleParser")

        actions = []
        for action_data in actions_data:
            if not isinstance(action_data, dict):
                raise RuleValidationError("Action must be a mapping", component="RuleParser")

            action_type = action_data.get('type')
            if not action_type:
                raise RuleValidationError("Action 'type' is required", component="RuleParser")
            if action_type not in self.valid_action_types:
                raise RuleValidationError(
                    f"Invalid action type: {action_type}. Must be one of: {sorted(self.valid_action_types)}",
                    component="RuleParser"
                )

            try:
                actions.append(RuleAction(type=action_type, target_value=action_data.get('target_value')))
            except PydanticValidationError as e:
                raise RuleValidationError(
                    f"Invalid action: {_format_pydantic_error(e)}",
                    component="RuleParser",
                    context={"action": action_data}
                )

        return actions

    def validate_rule(self, rule: Rule, domain: Optional[TicketDomain] = None) -> ValidationResult:
        """
        Validate a rule against the live ticket domain.

        Args:
            rule: Rule to validate
            domain: Domain to check against (defaults to the parser's domain)

        Returns:
            ValidationResult with any errors/warnings
        """
        domain = domain or self.domain
        errors = []
        warnings = []

        if not rule.trigger_conditions:
            errors.append("Rule has no conditions defined")

        if not rule.actions:
            errors.append("Rule has no actions defined")

        if domain is not None:
            for action in rule.mutation_actions():
                allowed = domain.values_for(action.attribute)
                if action.target_value not in allowed:
                    errors.append(
                        f"Action '{action.type.value}' targets unknown {action.attribute} "
                        f"'{action.target_value}'"
                    )

            for condition in rule.trigger_conditions:
                if condition.field == ConditionField.PRIORITY and condition.value not in domain.priorities:
                    errors.append(f"Condition compares against unknown priority '{condition.value}'")
                elif condition.field == ConditionField.STATUS and condition.value not in domain.statuses:
                    warnings.append(f"Condition compares against status '{condition.value}' outside the status list")

        seen = set()
        for action in rule.mutation_actions():
            if action.attribute in seen:
                warnings.append(
                    f"Rule sets '{action.attribute}' more than once; only the first action applies"
                )
            seen.add(action.attribute)

        if not rule.mutation_actions():
            warnings.append(
                "Rule only sends notifications - it fires on every cycle while its conditions hold"
            )

        if not rule.description:
            warnings.append("Rule has no description")

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def ensure_valid(self, rule: Rule, domain: Optional[TicketDomain] = None) -> ValidationResult:
        """
        Validate a rule and raise on errors.

        Raises:
            RuleValidationError: If the rule is invalid
        """
        validation = self.validate_rule(rule, domain)
        if not validation.valid:
            raise RuleValidationError(
                f"Invalid rule: {validation.errors}",
                component="RuleParser",
                context={"rule_id": rule.id, "errors": validation.errors}
            )
        for warning in validation.warnings:
            logger.debug(f"Rule {rule.id}: {warning}")
        return validation

    def parse_multiple_files(self, directory: str) -> List[Rule]:
        """
        Parse all YAML rule files in a directory, in file name order.

        Args:
            directory: Directory containing rule files

        Returns:
            List of parsed rules
        """
        rule_dir = Path(directory)

        if not rule_dir.exists():
            raise RuleValidationError(f"Directory not found: {directory}", component="RuleParser")

        rules = []
        files = sorted(list(rule_dir.glob('*.yaml')) + list(rule_dir.glob('*.yml')))
        for yaml_file in files:
            try:
                rules.append(self.parse_yaml_file(str(yaml_file)))
            except RuleValidationError as e:
                # Log error but continue parsing other files
                logger.warning(f"Failed to parse {yaml_file}: {e.message}")

        return rules

    def rule_to_yaml(self, rule: Rule) -> str:
        """
        Convert a rule definition to a YAML string.

        Runtime fields (version, update and execution timestamps) are left
        out; created_at is kept because conflict resolution orders by it.
        """
        rule_dict = rule.to_dict()
        for runtime_key in ('updated_at', 'last_executed_at', 'version'):
            rule_dict.pop(runtime_key, None)

        return yaml.safe_dump(rule_dict, default_flow_style=False, sort_keys=False)

    def save_rule_to_file(self, rule: Rule, file_path: str):
        """
        Save a rule to YAML file.
        """
        yaml_content = self.rule_to_yaml(rule)

        with open(file_path, 'w') as f:
            f.write(yaml_content)
