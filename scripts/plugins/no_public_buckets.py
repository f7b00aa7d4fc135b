#!/usr/bin/env python3
"""
Example cfs plugin: flag buckets that may be public.

For every bucket file under <output>/buckets/, fetch the bucket's public
access block, store it in the file, and warn about each bucket whose
configuration does not block all public access.

Install by copying into <output>/plugins/ and declaring it:

    # <output>/plugins/plugins.yaml
    plugins:
      - run: no_public_buckets.py
        description: Check buckets for public access
"""
import glob
import json
import os
import sys
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

BLOCK_SETTINGS = ('BlockPublicAcls', 'IgnorePublicAcls', 'BlockPublicPolicy', 'RestrictPublicBuckets')


def get_public_access_block(s3, bucket_name: str) -> Optional[Dict[str, Any]]:
    try:
        response = s3.get_public_access_block(Bucket=bucket_name)
    except ClientError as e:
        if e.response.get('Error', {}).get('Code') == 'NoSuchPublicAccessBlockConfiguration':
            return None
        raise
    return response.get('PublicAccessBlockConfiguration')


def is_at_risk(configuration: Optional[Dict[str, Any]]) -> bool:
    if not configuration:
        return True
    return not all(configuration.get(setting) for setting in BLOCK_SETTINGS)


def main(output_dir: Optional[str] = None) -> int:
    # cfs passes the output root to every plugin
    output_dir = output_dir or os.environ.get('CFS_OUTPUT', '.cfs')
    s3 = boto3.client('s3', region_name='us-east-1')
    at_risk = []

    for path in sorted(glob.glob(os.path.join(output_dir, 'buckets', '*'))):
        with open(path) as f:
            bucket = json.load(f)

        if 'PublicAccessBlockConfiguration' not in bucket:
            bucket['PublicAccessBlockConfiguration'] = get_public_access_block(s3, bucket['Name'])
            with open(path, 'w') as f:
                json.dump(bucket, f, indent=2)

        if is_at_risk(bucket['PublicAccessBlockConfiguration']):
            at_risk.append(bucket['Name'])

    for name in at_risk:
        print(f"The bucket [{name}] has no PublicAccessBlockConfiguration and is at risk for being public.",
              file=sys.stderr)
    if not at_risk:
        print("Nice! There are no public buckets, and all buckets have a PublicAccessBlockConfiguration.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
