# cloudsweep

`cloudsweep` finds the resources in a cloud account that are older than a
cut-off time and match your name filters, and deletes them region by region,
in an order that respects the dependencies between them.

It is meant for test and sandbox accounts: anything it selects is removed.

## What it covers

Regional resources, with the names used to select them:

- private certificate authorities (`acmpca`)
- auto scaling groups (`asg`)
- EC2 instances (`ec2`), EBS volumes (`ebs`), images owned by the account (`ami`)
- non-default VPCs (`vpc`), together with their internet gateway, endpoints,
  subnets, route tables, network ACLs and security groups
- ECS clusters (`ecscluster`)
- DynamoDB tables (`dynamodb`)
- CloudWatch dashboards (`cloudwatch-dashboard`) and log groups
  (`cloudwatch-loggroup`)
- IAM access analyzers (`accessanalyzer`)

`cloudsweep.account.list_resource_types()` returns these names, sorted. An
empty list of resource types, or one holding `"all"`, selects every type
(`cloudsweep.regions.is_nukeable`).

Separately, `cloudsweep.ec2` can revoke the default rules of every default
security group (`get_default_security_groups`,
`nuke_default_security_group_rules`) and tear down the default VPC of each
region (`new_vpc_per_region`, `get_default_vpcs`, `nuke_vpcs`).

## How it talks to the cloud

The package ships no cloud SDK. Every function that makes API calls takes
either a session, an object with a `client(service)` method returning a client
for the named service (see `cloudsweep.core.AwsSession`), or a
`session_factory`, a callable that takes a region name and returns such a
session. Clients are expected to expose snake_case operations that take
keyword arguments and return dicts, and waiters through `get_waiter(name)`.
Failures reported by the service should be raised as
`cloudsweep.core.ServiceError`, which carries the service's error code.

## Usage

```python
from datetime import datetime, timedelta, timezone

from cloudsweep.account import get_all_resources, nuke_all_resources
from cloudsweep.core import AwsSession, Config
from cloudsweep.regions import get_enabled_regions, get_target_regions


def make_client(service, region):
    ...  # return a client for that service in that region


def session_factory(region):
    return AwsSession(region, make_client)


enabled = get_enabled_regions(session_factory)
regions = get_target_regions(enabled, ["us-east-1"], [])

cutoff = datetime.now(timezone.utc) - timedelta(hours=24)
account = get_all_resources(session_factory, regions, cutoff, ["ec2", "ebs"], Config())

nuke_all_resources(account, regions, session_factory)
```

`get_all_resources` returns an `AccountResources`, whose `resources` maps each
region to the resources found there; regions with nothing to delete are left
out.

### Choosing regions

`get_enabled_regions(session_factory)` asks the regions enabled by default,
one after another, until one answers. `get_random_region(session_factory,
exclude)` picks one of the enabled regions at random.

`get_target_regions(enabled, selected, excluded)`:

- with neither `selected` nor `excluded`, returns every enabled region;
- with `selected`, returns exactly those regions;
- with `excluded`, returns the enabled regions that are not excluded;
- raises `ValueError` when no regions are enabled, when both lists are
  given, when a named region is not enabled, or when every region would be
  excluded.

### Filtering by name and age

A `Config` holds a `ResourceType` for each resource kind, and each of those an
include and an exclude `FilterRule` of regular expressions (strings are
compiled for you). A resource is kept when its name matches an include
pattern (or there are none) and matches no exclude pattern;
`should_include(name, include_patterns, exclude_patterns)` applies that rule.
EC2 instances, EBS volumes and VPCs are named by their `Name` tag.

Resources created after the cut-off are kept. VPCs and ECS clusters carry no
creation time, so they are tagged `cloud-nuke-first-seen` the first time they
are seen; an ECS cluster seen for the first time is left alone on that run.
Termination-protected EC2 instances are never selected.

### Batching and errors

Deletions run in batches no larger than each resource kind allows;
`split(identifiers, limit)` does the chunking. Between batches the run pauses
ten seconds. When a batch fails with `RequestLimitExceeded`, that batch is
dropped and the run pauses a minute before moving on; any other failure is
raised.

Kinds deleted with one call per resource at a time (access analyzers,
certificate authorities, log groups) gather the failures into a
`cloudsweep.core.MultiError`, and refuse more than 100 at once.

## What it does not do

- There is no command-line program; the package is used as a library.
- The pseudo-region `"global"` is accepted in the target regions, but no
  global resource kinds (such as IAM users) are collected or deleted.

## Running the tests

Install the `test` extra and run `pytest` from the project root.