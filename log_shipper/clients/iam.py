import re
from typing import Any, Dict, List, Optional

import structlog
from botocore.client import BaseClient  # type: ignore

logger = structlog.get_logger(__name__)

# Write actions the shipper performs against a log group's streams
SHIPPER_ACTIONS = [
    "logs:CreateLogStream",
    "logs:DescribeLogStreams",
    "logs:PutLogEvents",
]

ASSUMED_ROLE_ARN = re.compile(
    r"^arn:(?P<partition>[^:]+):sts::(?P<account>\d+):assumed-role/(?P<role>[^/]+)/.+$"
)


def principal_arn(caller_arn: str) -> str:
    """
    Turn the caller identity ARN into one accepted by SimulatePrincipalPolicy.

    Sessions of an assumed role are simulated as the role itself.
    """
    match = ASSUMED_ROLE_ARN.match(caller_arn)
    if match:
        return f"arn:{match['partition']}:iam::{match['account']}:role/{match['role']}"
    return caller_arn


def log_streams_arn(
    partition: str, region: Optional[str], account: str, log_group_name: str
) -> str:
    return f"arn:{partition}:logs:{region or '*'}:{account}:log-group:{log_group_name}:log-stream:*"


class PolicySimulator:
    def __init__(self, sts_client: BaseClient, iam_client: BaseClient, region: Optional[str]):
        self.sts_client = sts_client
        self.iam_client = iam_client
        self.region = region

    def _evaluation_results(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        marker = None
        while True:
            if marker:
                params["Marker"] = marker
            response = self.iam_client.simulate_principal_policy(**params)
            results.extend(response.get("EvaluationResults", []))

            marker = response.get("Marker")
            if not response.get("IsTruncated") or not marker:
                return results

    def restriction(self, log_group_name: str) -> Optional[str]:
        """
        Simulate the shipper's write actions for the calling principal.

        Returns a message describing the denied actions, or None when every
        action is allowed.
        """
        identity = self.sts_client.get_caller_identity()
        caller_arn = identity["Arn"]
        source_arn = principal_arn(caller_arn)
        partition = caller_arn.split(":")[1]
        resource_arn = log_streams_arn(
            partition, self.region, identity["Account"], log_group_name
        )

        results = self._evaluation_results(
            {
                "PolicySourceArn": source_arn,
                "ActionNames": list(SHIPPER_ACTIONS),
                "ResourceArns": [resource_arn],
            }
        )

        denied = [
            f"{result['EvalActionName']} ({result['EvalDecision']})"
            for result in results
            if result.get("EvalDecision") != "allowed"
        ]
        logger.debug(
            "Simulated shipper permissions",
            policy_source_arn=source_arn,
            resource_arn=resource_arn,
            denied=denied,
        )
        if not denied:
            return None
        return f"{source_arn} is not allowed to perform {', '.join(denied)} on {resource_arn}"
