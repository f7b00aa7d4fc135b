"""
Data models for the cfs resource mirror.

Every resource kind declares the shape of one listed item here. Shapes are
lenient: only the identity field is required, declared optional
fields are type-checked when present, and anything else the API returns is
kept verbatim so it ends up in the mirrored file.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter
from pydantic.alias_generators import to_camel, to_pascal

from .constants import MAX_REGION_NAME_LENGTH, MAX_REGIONS

ShortString = Annotated[str, StringConstraints(min_length=1, max_length=500)]
LongString = Annotated[str, StringConstraints(min_length=1, max_length=10000)]
# Bare string items (table names, queue URLs, stream names)
ResourceName = Annotated[str, StringConstraints(min_length=1, max_length=1000)]


class AwsShape(BaseModel):
    """
    Base shape for APIs that use PascalCase keys (most of them).

    Python attribute names are snake_case; the generated aliases match the
    API keys. Acronym keys such as ``DNSName`` carry an explicit alias.
    """
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, extra='allow')

    def to_document(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dict keyed the way the API returned it."""
        return self.model_dump(mode='json', by_alias=True, exclude_unset=True)


class CamelShape(AwsShape):
    """Base shape for APIs that use camelCase keys (API Gateway, Logs, CodePipeline)."""
    model_config = ConfigDict(alias_generator=to_camel)


class Tag(AwsShape):
    key: ShortString
    value: Optional[str] = None


# =============================================================================
# Regions
# =============================================================================

class Region(AwsShape):
    """An enabled region as returned by EC2 DescribeRegions."""
    region_name: Annotated[str, StringConstraints(min_length=1, max_length=MAX_REGION_NAME_LENGTH)]
    endpoint: Optional[ShortString] = None
    opt_in_status: Optional[ShortString] = None


RegionList = Annotated[List[Region], Field(min_length=1, max_length=MAX_REGIONS)]
REGION_LIST_ADAPTER: TypeAdapter = TypeAdapter(RegionList)


# =============================================================================
# Compute
# =============================================================================

class CidrBlockState(AwsShape):
    state: Optional[Literal['associated', 'associating', 'disassociated', 'disassociating', 'failed', 'failing']] = None
    status_message: Optional[LongString] = None


class CidrBlockAssociation(AwsShape):
    association_id: Optional[ShortString] = None
    cidr_block: Optional[ShortString] = None
    cidr_block_state: Optional[CidrBlockState] = None


class Vpc(AwsShape):
    vpc_id: LongString
    cidr_block: Optional[ShortString] = None
    dhcp_options_id: Optional[ShortString] = None
    owner_id: Optional[ShortString] = None
    is_default: Optional[bool] = None
    state: Optional[Literal['available', 'pending']] = None
    instance_tenancy: Optional[Literal['dedicated', 'default', 'host']] = None
    cidr_block_association_set: Optional[List[CidrBlockAssociation]] = None
    tags: Optional[List[Tag]] = None


class Reservation(AwsShape):
    reservation_id: ShortString
    owner_id: Optional[ShortString] = None
    requester_id: Optional[ShortString] = None
    instances: Optional[List[Dict[str, Any]]] = None


class VpcConfig(AwsShape):
    subnet_ids: Optional[List[ShortString]] = None
    security_group_ids: Optional[List[ShortString]] = None
    vpc_id: Optional[str] = None


class Function(AwsShape):
    function_name: ShortString
    function_arn: Optional[ShortString] = None
    runtime: Optional[ShortString] = None
    role: Optional[ShortString] = None
    handler: Optional[ShortString] = None
    code_size: Optional[int] = None
    description: Optional[str] = None
    timeout: Optional[int] = None
    memory_size: Optional[int] = None
    last_modified: Optional[ShortString] = None
    version: Optional[ShortString] = None
    vpc_config: Optional[VpcConfig] = None
    kms_key_arn: Optional[ShortString] = Field(default=None, alias='KMSKeyArn')
    state: Optional[Literal['Active', 'Failed', 'Inactive', 'Pending']] = None
    package_type: Optional[Literal['Image', 'Zip']] = None
    architectures: Optional[List[Literal['arm64', 'x86_64']]] = None


class Canary(AwsShape):
    id: ShortString
    name: Optional[ShortString] = None
    execution_role_arn: Optional[ShortString] = None
    runtime_version: Optional[ShortString] = None
    status: Optional[Dict[str, Any]] = None
    schedule: Optional[Dict[str, Any]] = None
    tags: Optional[Dict[str, str]] = None


# =============================================================================
# Storage & Databases
# =============================================================================

class Bucket(AwsShape):
    name: ShortString
    creation_date: Optional[datetime] = None
    bucket_region: Optional[ShortString] = None


class DatabaseCluster(AwsShape):
    db_cluster_identifier: ShortString = Field(alias='DBClusterIdentifier')
    database_name: Optional[ShortString] = None
    engine: Optional[ShortString] = None
    engine_version: Optional[ShortString] = None
    status: Optional[ShortString] = None
    db_cluster_arn: Optional[ShortString] = Field(default=None, alias='DBClusterArn')
    storage_encrypted: Optional[bool] = None
    multi_az: Optional[bool] = Field(default=None, alias='MultiAZ')


# =============================================================================
# Networking & Delivery
# =============================================================================

class HostedZoneConfig(AwsShape):
    comment: Optional[str] = None
    private_zone: Optional[bool] = None


class HostedZone(AwsShape):
    id: ShortString
    name: Optional[ShortString] = None
    caller_reference: Optional[ShortString] = None
    config: Optional[HostedZoneConfig] = None
    resource_record_set_count: Optional[int] = None


class Certificate(AwsShape):
    certificate_arn: ShortString
    domain_name: Optional[ShortString] = None
    status: Optional[ShortString] = None
    type: Optional[ShortString] = None
    in_use: Optional[bool] = None


class Distribution(AwsShape):
    id: ShortString
    arn: Optional[ShortString] = Field(default=None, alias='ARN')
    status: Optional[ShortString] = None
    last_modified_time: Optional[datetime] = None
    domain_name: Optional[ShortString] = None
    comment: Optional[str] = None
    price_class: Optional[ShortString] = None
    enabled: Optional[bool] = None
    web_acl_id: Optional[str] = Field(default=None, alias='WebACLId')
    http_version: Optional[ShortString] = None
    is_ipv6_enabled: Optional[bool] = Field(default=None, alias='IsIPV6Enabled')


class ClassicLoadBalancer(AwsShape):
    load_balancer_name: LongString
    dns_name: Optional[LongString] = Field(default=None, alias='DNSName')
    scheme: Optional[ShortString] = None
    vpc_id: Optional[ShortString] = Field(default=None, alias='VPCId')
    created_time: Optional[datetime] = None


class LoadBalancer(AwsShape):
    load_balancer_name: LongString
    load_balancer_arn: Optional[LongString] = None
    dns_name: Optional[LongString] = Field(default=None, alias='DNSName')
    scheme: Optional[ShortString] = None
    vpc_id: Optional[ShortString] = None
    type: Optional[ShortString] = None
    created_time: Optional[datetime] = None


class RestApi(CamelShape):
    id: ShortString
    name: Optional[ShortString] = None
    description: Optional[str] = None
    created_date: Optional[datetime] = None
    version: Optional[ShortString] = None
    api_key_source: Optional[ShortString] = None
    endpoint_configuration: Optional[Dict[str, Any]] = None
    tags: Optional[Dict[str, str]] = None


class HttpApi(AwsShape):
    api_id: ShortString
    name: Optional[ShortString] = None
    api_endpoint: Optional[ShortString] = None
    protocol_type: Optional[Literal['HTTP', 'WEBSOCKET']] = None
    route_selection_expression: Optional[ShortString] = None
    created_date: Optional[datetime] = None
    tags: Optional[Dict[str, str]] = None


# =============================================================================
# Messaging & Streaming
# =============================================================================

class Topic(AwsShape):
    topic_arn: ShortString


# =============================================================================
# Management & Monitoring
# =============================================================================

class StackParameter(AwsShape):
    parameter_key: Optional[ShortString] = None
    parameter_value: Optional[str] = None


class Stack(AwsShape):
    stack_id: ShortString
    stack_name: Optional[ShortString] = None
    description: Optional[str] = None
    parameters: Optional[List[StackParameter]] = None
    creation_time: Optional[datetime] = None
    last_updated_time: Optional[datetime] = None
    stack_status: Optional[ShortString] = None
    disable_rollback: Optional[bool] = None
    capabilities: Optional[List[ShortString]] = None
    outputs: Optional[List[Dict[str, Any]]] = None
    tags: Optional[List[Tag]] = None


class MetricAlarm(AwsShape):
    alarm_arn: ShortString
    alarm_name: Optional[ShortString] = None
    alarm_description: Optional[str] = None
    actions_enabled: Optional[bool] = None
    state_value: Optional[Literal['OK', 'ALARM', 'INSUFFICIENT_DATA']] = None
    state_updated_timestamp: Optional[datetime] = None
    metric_name: Optional[ShortString] = None
    namespace: Optional[ShortString] = None
    statistic: Optional[ShortString] = None
    period: Optional[int] = None
    evaluation_periods: Optional[int] = None
    threshold: Optional[float] = None
    comparison_operator: Optional[ShortString] = None


class CompositeAlarm(AwsShape):
    alarm_arn: ShortString
    alarm_name: Optional[ShortString] = None
    alarm_rule: Optional[LongString] = None
    actions_enabled: Optional[bool] = None
    state_value: Optional[Literal['OK', 'ALARM', 'INSUFFICIENT_DATA']] = None


class Parameter(AwsShape):
    name: LongString
    type: Optional[Literal['String', 'StringList', 'SecureString']] = None
    key_id: Optional[str] = None
    last_modified_date: Optional[datetime] = None
    last_modified_user: Optional[ShortString] = None
    description: Optional[str] = None
    version: Optional[int] = None
    tier: Optional[Literal['Standard', 'Advanced', 'Intelligent-Tiering']] = None
    policies: Optional[List[Dict[str, Any]]] = None
    data_type: Optional[ShortString] = None


class Pipeline(CamelShape):
    name: LongString
    version: Optional[int] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None


class LogGroup(CamelShape):
    log_group_name: LongString
    arn: Optional[LongString] = None
    creation_time: Optional[int] = None
    retention_in_days: Optional[int] = None
    stored_bytes: Optional[int] = None
    kms_key_id: Optional[str] = None


# =============================================================================
# Identity & Secrets
# =============================================================================

class Role(AwsShape):
    path: ShortString
    role_name: ShortString
    role_id: Optional[ShortString] = None
    arn: Optional[ShortString] = None
    create_date: Optional[datetime] = None
    description: Optional[str] = None
    max_session_duration: Optional[int] = None


class User(AwsShape):
    path: ShortString
    user_name: ShortString
    user_id: Optional[ShortString] = None
    arn: Optional[ShortString] = None
    create_date: Optional[datetime] = None
    password_last_used: Optional[datetime] = None


class Policy(AwsShape):
    path: ShortString
    policy_name: ShortString
    policy_id: Optional[ShortString] = None
    arn: Optional[ShortString] = None
    default_version_id: Optional[ShortString] = None
    attachment_count: Optional[int] = None
    is_attachable: Optional[bool] = None
    create_date: Optional[datetime] = None
    update_date: Optional[datetime] = None


class Secret(AwsShape):
    name: LongString
    arn: Optional[ShortString] = Field(default=None, alias='ARN')
    description: Optional[str] = None
    kms_key_id: Optional[str] = None
    rotation_enabled: Optional[bool] = None
    last_changed_date: Optional[datetime] = None
    last_accessed_date: Optional[datetime] = None
    tags: Optional[List[Tag]] = None


def to_document(item: Any) -> Any:
    """Return the JSON-safe document written to disk for a validated item."""
    if isinstance(item, BaseModel):
        return item.to_document()  # type: ignore[attr-defined]
    return item
