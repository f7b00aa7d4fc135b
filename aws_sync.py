#!/usr/bin/env python3
"""
cfs - AWS Resource Sync

Mirrors an AWS account into a local directory tree, one JSON file per
resource. Every resource kind is a declarative ResourceKind (which API to
page through, which shape each item must match, how its file path is built)
interpreted by one generic ResourceWriter.

Layout:
    <output>/<kind>/[<sub-kind>/]<region>/<identity...>    regional kinds
    <output>/<kind>/<identity...>                          global kinds

Usage:
    python3 aws_sync.py                       # all enabled regions
    python3 aws_sync.py --region us-east-1    # a single region
    python3 aws_sync.py --output ./mirror --profile prod

The full CLI (list, find, browse, clean, plugins) lives in cfs.py.
"""
import argparse
import logging
import os
import shutil
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError
from pydantic import TypeAdapter

from cfslib import models
from cfslib.constants import (
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RETRY_ATTEMPTS,
    GLOBAL_CLIENT_REGION,
    SCOPE_GLOBAL,
    SCOPE_REGIONAL,
)
from cfslib.errors import ErrorCollector
from cfslib.utils import (
    ProgressTracker,
    encode_path_segment,
    make_leaf_target,
    retry_with_backoff,
    setup_logging,
    split_hierarchy,
    trim_to_suffix,
    write_json,
)

logger = logging.getLogger(__name__)

Page = Dict[str, Any]

# boto3 sessions are not thread safe; clients created from them are
_client_lock = threading.Lock()


# =============================================================================
# Session Management
# =============================================================================

def get_session(profile: Optional[str] = None, region: Optional[str] = None) -> boto3.Session:
    """Create boto3 session using the default credential chain."""
    return boto3.Session(profile_name=profile, region_name=region)


def create_client(session: boto3.Session, service: str, region: str):
    """Create a service client; safe to call from worker threads."""
    with _client_lock:
        return session.client(service, region_name=region)


THROTTLING_ERROR_CODES = {
    'Throttling', 'ThrottlingException', 'RequestLimitExceeded',
    'TooManyRequestsException', 'RequestThrottled',
}


def is_throttling_error(exc: BaseException) -> bool:
    """Check if a ClientError is a throttling response worth retrying."""
    if not isinstance(exc, ClientError):
        return False
    return exc.response.get('Error', {}).get('Code') in THROTTLING_ERROR_CODES


# =============================================================================
# Resource Kinds
# =============================================================================

@dataclass
class ResourceKind:
    """
    Declarative description of one mirrored resource kind.

    Attributes:
        name: Top-level directory under the output root
        service: boto3 service name
        operation: boto3 operation (snake_case)
        page_key: Key of the item array in each page; dots descend into nested dicts
        shape: pydantic model (or constrained str) every item must match
        identity: Maps a validated item to its encoded path segments
        subkind: Optional directory between kind and region
        scope: SCOPE_REGIONAL (fan out over regions) or SCOPE_GLOBAL (one call)
        operation_kwargs: Extra arguments for every listing call
        excluded_regions: Regions where the service is known to be unavailable
        client_region: Region the client of a global kind talks to
        paginated: False for APIs without pagination (one page)
        next_token: Token key for APIs paginated by hand instead of a boto3 paginator
    """
    name: str
    service: str
    operation: str
    page_key: str
    shape: Any
    identity: Callable[[Any], List[str]]
    subkind: Optional[str] = None
    scope: str = SCOPE_REGIONAL
    operation_kwargs: Dict[str, Any] = field(default_factory=dict)
    excluded_regions: FrozenSet[str] = frozenset()
    client_region: str = GLOBAL_CLIENT_REGION
    paginated: bool = True
    next_token: Optional[str] = None
    _adapter: TypeAdapter = field(init=False, repr=False)

    def __post_init__(self):
        self._adapter = TypeAdapter(List[self.shape])

    @property
    def label(self) -> str:
        return f"{self.name}/{self.subkind}" if self.subkind else self.name

    def directory(self, output_dir: str) -> str:
        if self.subkind:
            return os.path.join(output_dir, self.name, self.subkind)
        return os.path.join(output_dir, self.name)

    def target(self, output_dir: str, region_name: Optional[str], item: Any) -> str:
        """Build the Write Target of one validated item."""
        parts = [self.directory(output_dir)]
        if region_name:
            parts.append(encode_path_segment(region_name))
        parts.extend(self.identity(item))
        return os.path.join(*parts)

    def items(self, page: Page) -> Any:
        value: Any = page
        for key in self.page_key.split('.'):
            if not isinstance(value, dict):
                return []
            value = value.get(key)
        return value if value is not None else []

    def validate_page(self, page: Page) -> List[Any]:
        """Validate a page's items as a whole; one bad item fails the page."""
        return self._adapter.validate_python(self.items(page))


def _attribute(name: str) -> Callable[[Any], List[str]]:
    """Identity is a single attribute of the item."""
    return lambda item: [encode_path_segment(getattr(item, name))]


def _suffix(name: str, qualifier: str) -> Callable[[Any], List[str]]:
    """Identity is the part of an ARN/ID after a qualifier."""
    return lambda item: [encode_path_segment(trim_to_suffix(getattr(item, name), qualifier))]


def _hierarchy(name: str) -> Callable[[Any], List[str]]:
    """Identity is a slash-delimited name mirrored as nested directories."""
    def identity(item: Any) -> List[str]:
        value = getattr(item, name)
        return split_hierarchy(value) or [encode_path_segment(value)]
    return identity


def _path_and_name(path: str, name: str) -> Callable[[Any], List[str]]:
    """Identity is an IAM path (nested directories) plus a name."""
    return lambda item: split_hierarchy(getattr(item, path)) + [encode_path_segment(getattr(item, name))]


def _string(item: str) -> List[str]:
    return [encode_path_segment(item)]


def _queue_name(url: str) -> List[str]:
    # https://sqs.us-east-1.amazonaws.com/123456789012/my-queue -> my-queue
    return [encode_path_segment(url.rstrip('/').rsplit('/', 1)[-1])]


def _topic_name(item: models.Topic) -> List[str]:
    # arn:aws:sns:us-east-1:123456789012:my-topic -> my-topic
    return [encode_path_segment(item.topic_arn.rsplit(':', 1)[-1])]


REGIONS_KIND = ResourceKind(
    name='regions', service='ec2', operation='describe_regions', page_key='Regions',
    shape=models.Region, identity=_attribute('region_name'), scope=SCOPE_GLOBAL, paginated=False,
)

RESOURCE_KINDS: List[ResourceKind] = [
    # Compute
    ResourceKind(name='vpcs', service='ec2', operation='describe_vpcs', page_key='Vpcs',
                 shape=models.Vpc, identity=_attribute('vpc_id')),
    ResourceKind(name='instances', service='ec2', operation='describe_instances', page_key='Reservations',
                 shape=models.Reservation, identity=_attribute('reservation_id')),
    ResourceKind(name='functions', service='lambda', operation='list_functions', page_key='Functions',
                 shape=models.Function, identity=_attribute('function_name')),
    ResourceKind(name='canaries', service='synthetics', operation='describe_canaries', page_key='Canaries',
                 shape=models.Canary, identity=_attribute('id'), next_token='NextToken'),

    # Storage & Databases
    ResourceKind(name='buckets', service='s3', operation='list_buckets', page_key='Buckets',
                 shape=models.Bucket, identity=_attribute('name'), scope=SCOPE_GLOBAL, paginated=False),
    ResourceKind(name='tables', service='dynamodb', operation='list_tables', page_key='TableNames',
                 shape=models.ResourceName, identity=_string),
    ResourceKind(name='databases', service='rds', operation='describe_db_clusters', page_key='DBClusters',
                 shape=models.DatabaseCluster, identity=_attribute('db_cluster_identifier'),
                 operation_kwargs={'IncludeShared': True}),

    # Networking & Delivery
    ResourceKind(name='domains', service='route53', operation='list_hosted_zones', page_key='HostedZones',
                 shape=models.HostedZone, identity=_suffix('id', '/hostedzone/'), scope=SCOPE_GLOBAL),
    ResourceKind(name='certificates', service='acm', operation='list_certificates',
                 page_key='CertificateSummaryList', shape=models.Certificate,
                 identity=_suffix('certificate_arn', ':certificate/')),
    ResourceKind(name='distributions', service='cloudfront', operation='list_distributions',
                 page_key='DistributionList.Items', shape=models.Distribution, identity=_attribute('id'),
                 scope=SCOPE_GLOBAL),
    ResourceKind(name='apis', subkind='rest', service='apigateway', operation='get_rest_apis', page_key='items',
                 shape=models.RestApi, identity=_attribute('id')),
    ResourceKind(name='apis', subkind='http', service='apigatewayv2', operation='get_apis', page_key='Items',
                 shape=models.HttpApi, identity=_attribute('api_id'), next_token='NextToken'),
    ResourceKind(name='elbs', subkind='classic', service='elb', operation='describe_load_balancers',
                 page_key='LoadBalancerDescriptions', shape=models.ClassicLoadBalancer,
                 identity=_attribute('load_balancer_name')),
    ResourceKind(name='elbs', subkind='v2', service='elbv2', operation='describe_load_balancers',
                 page_key='LoadBalancers', shape=models.LoadBalancer, identity=_attribute('load_balancer_name')),

    # Messaging & Streaming
    ResourceKind(name='queues', service='sqs', operation='list_queues', page_key='QueueUrls',
                 shape=models.ResourceName, identity=_queue_name),
    ResourceKind(name='topics', service='sns', operation='list_topics', page_key='Topics',
                 shape=models.Topic, identity=_topic_name),
    ResourceKind(name='streams', service='kinesis', operation='list_streams', page_key='StreamNames',
                 shape=models.ResourceName, identity=_string),

    # Management & Monitoring
    ResourceKind(name='stacks', service='cloudformation', operation='describe_stacks', page_key='Stacks',
                 shape=models.Stack, identity=_suffix('stack_id', ':stack/')),
    ResourceKind(name='alarms', subkind='metric', service='cloudwatch', operation='describe_alarms',
                 page_key='MetricAlarms', shape=models.MetricAlarm, identity=_suffix('alarm_arn', ':alarm:'),
                 operation_kwargs={'AlarmTypes': ['MetricAlarm']}),
    ResourceKind(name='alarms', subkind='composite', service='cloudwatch', operation='describe_alarms',
                 page_key='CompositeAlarms', shape=models.CompositeAlarm, identity=_suffix('alarm_arn', ':alarm:'),
                 operation_kwargs={'AlarmTypes': ['CompositeAlarm']}),
    ResourceKind(name='parameters', service='ssm', operation='describe_parameters', page_key='Parameters',
                 shape=models.Parameter, identity=_hierarchy('name')),
    ResourceKind(name='pipelines', service='codepipeline', operation='list_pipelines', page_key='pipelines',
                 shape=models.Pipeline, identity=_attribute('name'),
                 excluded_regions=frozenset({'ap-northeast-3'})),
    ResourceKind(name='logs', service='logs', operation='describe_log_groups', page_key='logGroups',
                 shape=models.LogGroup, identity=_hierarchy('log_group_name')),

    # Identity & Secrets
    ResourceKind(name='roles', service='iam', operation='list_roles', page_key='Roles',
                 shape=models.Role, identity=_path_and_name('path', 'role_name'), scope=SCOPE_GLOBAL),
    ResourceKind(name='users', service='iam', operation='list_users', page_key='Users',
                 shape=models.User, identity=_path_and_name('path', 'user_name'), scope=SCOPE_GLOBAL),
    ResourceKind(name='policies', service='iam', operation='list_policies', page_key='Policies',
                 shape=models.Policy, identity=_path_and_name('path', 'policy_name'), scope=SCOPE_GLOBAL),
    ResourceKind(name='secrets', service='secretsmanager', operation='list_secrets', page_key='SecretList',
                 shape=models.Secret, identity=_hierarchy('name')),
]


# =============================================================================
# Region Resolver
# =============================================================================

class RegionResolver:
    """
    Lists enabled regions once per run.

    The first list() call fetches and validates; every later call returns the
    same cached list, even if set() is called in between.
    """

    def __init__(self, session: boto3.Session, output_dir: str = DEFAULT_OUTPUT_DIR):
        self.session = session
        self.output_dir = output_dir
        self.kind = REGIONS_KIND
        self._region: Optional[str] = None
        self._regions: Optional[List[models.Region]] = None
        self._lock = threading.Lock()

    def set(self, region: Optional[str]) -> None:
        """Restrict discovery to a single region."""
        if region:
            self._region = region

    @retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=(ClientError,),
                        should_retry=is_throttling_error)
    def describe_regions(self) -> List[Dict[str, Any]]:
        ec2 = create_client(self.session, 'ec2', GLOBAL_CLIENT_REGION)
        params: Dict[str, Any] = {'AllRegions': False}
        if self._region:
            # An unknown name yields an empty list, not an InvalidParameterValue
            params['Filters'] = [{'Name': 'region-name', 'Values': [self._region]}]
        regions = ec2.describe_regions(**params).get('Regions', [])
        if self._region:
            regions = [r for r in regions if r.get('RegionName') == self._region]
        return regions

    def list(self) -> List[models.Region]:
        with self._lock:
            if self._regions is None:
                self._regions = models.REGION_LIST_ADAPTER.validate_python(self.describe_regions())
                logger.info(f"Resolved {len(self._regions)} regions")
            return self._regions

    def clear(self) -> None:
        directory = self.kind.directory(self.output_dir)
        if os.path.exists(directory):
            shutil.rmtree(directory)

    def write(self) -> int:
        """Mirror the resolved regions to <output>/regions/."""
        self.clear()
        regions = self.list()
        os.makedirs(self.kind.directory(self.output_dir), exist_ok=True)
        for region in regions:
            write_json(region.to_document(), self.kind.target(self.output_dir, None, region))
        return len(regions)


# =============================================================================
# Resource Writer
# =============================================================================

def _token_pages(client, operation: str, kwargs: Dict[str, Any], token_key: str) -> Iterator[Page]:
    """Page through an API that returns a continuation token but has no boto3 paginator."""
    params = dict(kwargs)
    while True:
        page = getattr(client, operation)(**params)
        yield page
        token = page.get(token_key)
        if not token:
            return
        params[token_key] = token


class ResourceWriter:
    """
    Fetch, validate and persist one resource kind.

    Each region is written in its own worker. A failing region is recorded in
    the ErrorCollector and never stops its siblings.
    """

    def __init__(
        self,
        kind: ResourceKind,
        session: boto3.Session,
        regions: RegionResolver,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        max_workers: Optional[int] = None,
    ):
        self.kind = kind
        self.session = session
        self.regions = regions
        self.output_dir = output_dir
        self.max_workers = max_workers

    def pages(self, region_name: Optional[str]) -> Iterator[Page]:
        """Lazily yield listing pages; no API call happens before the first next()."""
        client = create_client(self.session, self.kind.service, region_name or self.kind.client_region)
        if self.kind.next_token:
            yield from _token_pages(client, self.kind.operation, self.kind.operation_kwargs, self.kind.next_token)
        elif self.kind.paginated:
            paginator = client.get_paginator(self.kind.operation)
            yield from paginator.paginate(**self.kind.operation_kwargs)
        else:
            yield getattr(client, self.kind.operation)(**self.kind.operation_kwargs)

    def list(self) -> List[Tuple[Optional[models.Region], Iterator[Page]]]:
        if self.kind.scope == SCOPE_GLOBAL:
            return [(None, self.pages(None))]
        return [
            (region, self.pages(region.region_name))
            for region in self.regions.list()
            if region.region_name not in self.kind.excluded_regions
        ]

    def clear(self) -> None:
        directory = self.kind.directory(self.output_dir)
        if os.path.exists(directory):
            shutil.rmtree(directory)

    def _write_pages(self, region: Optional[models.Region], pages: Iterator[Page]) -> int:
        region_name = region.region_name if region else None
        root = self.kind.directory(self.output_dir)
        written = 0
        for page in pages:
            for item in self.kind.validate_page(page):
                target = make_leaf_target(self.kind.target(self.output_dir, region_name, item), root)
                write_json(models.to_document(item), target)
                written += 1
        return written

    def write(self, errors: ErrorCollector) -> int:
        """
        Replace this kind's subtree with a fresh copy.

        Returns:
            Number of files written by the regions that completed
        """
        self.clear()
        entries = self.list()
        os.makedirs(os.path.join(self.output_dir, self.kind.name), exist_ok=True)

        total = 0
        workers = self.max_workers or max(len(entries), 1)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._write_pages, region, pages): region
                for region, pages in entries
            }
            for future in as_completed(futures):
                region = futures[future]
                context = f"{self.kind.label}/{region.region_name}" if region else self.kind.label
                try:
                    total += future.result()
                except Exception as e:
                    errors.add_error(e, context)

        logger.info(f"[{self.kind.label}] Wrote {total} files")
        return total


# =============================================================================
# Sync
# =============================================================================

def build_writers(
    session: boto3.Session,
    regions: RegionResolver,
    output_dir: str,
    max_workers: Optional[int] = None,
    kinds: Optional[List[ResourceKind]] = None,
) -> List[ResourceWriter]:
    """Instantiate one writer per resource kind."""
    return [
        ResourceWriter(kind, session, regions, output_dir, max_workers)
        for kind in (kinds if kinds is not None else RESOURCE_KINDS)
    ]


def sync_account(
    session: boto3.Session,
    output_dir: str,
    errors: ErrorCollector,
    region: Optional[str] = None,
    max_workers: Optional[int] = None,
    tracker: Optional[ProgressTracker] = None,
    kinds: Optional[List[ResourceKind]] = None,
) -> Dict[str, int]:
    """
    Mirror every resource kind of the account into output_dir.

    Regions are resolved and written first; then every kind runs concurrently.
    Failures end up in `errors`, never in an exception.

    Returns:
        Files written per resource kind label
    """
    resolver = RegionResolver(session, output_dir)
    resolver.set(region)

    files_by_kind: Dict[str, int] = {}
    try:
        files_by_kind[REGIONS_KIND.label] = resolver.write()
    except Exception as e:
        logger.error(f"[{REGIONS_KIND.label}] Failed: {e}")
        errors.add_error(e, REGIONS_KIND.label)

    writers = build_writers(session, resolver, output_dir, max_workers, kinds)
    if not writers:
        return files_by_kind

    with ThreadPoolExecutor(max_workers=max_workers or len(writers)) as executor:
        futures = {executor.submit(writer.write, errors): writer for writer in writers}
        for future in as_completed(futures):
            label = futures[future].kind.label
            written = 0
            try:
                written = future.result()
                files_by_kind[label] = written
            except Exception as e:
                logger.error(f"[{label}] Failed: {e}")
                errors.add_error(e, label)
            if tracker:
                tracker.complete_kind(label, written)

    return files_by_kind


def main():
    parser = argparse.ArgumentParser(description='cfs - AWS Resource Sync')
    parser.add_argument('--region', help='Restrict discovery to a single region')
    parser.add_argument('--output', '-o', default=DEFAULT_OUTPUT_DIR, help='Output directory')
    parser.add_argument('--profile', help='AWS profile name')
    parser.add_argument('--max-workers', type=int, default=None, metavar='N',
                        help='Upper bound on concurrent workers per fan-out')
    parser.add_argument('--log-level', default='INFO', help='Logging level')
    args = parser.parse_args()

    setup_logging(args.log_level)
    session = get_session(args.profile)
    errors = ErrorCollector()

    started = time.monotonic()
    files_by_kind = sync_account(session, args.output, errors, args.region, args.max_workers)
    logger.info(f"Wrote {sum(files_by_kind.values())} files in {time.monotonic() - started:.1f}s")

    if len(errors):
        logger.error(f"Completed with {len(errors)} errors; run `cfs` for the categorized error log")
        sys.exit(1)


if __name__ == '__main__':
    main()
