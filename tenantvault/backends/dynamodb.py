"""DynamoDB storage backend.

Tables in the local AWS account are reached with the process credentials.
Tables owned by a tenant's own AWS account (a ``TableRef`` with
``remote_account_id``) are reached by assuming a cross-account role there:

    arn:aws:iam::<remote_account_id>:role/<cross_account_role_name>

boto3 is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import reduce
from typing import Any, Callable, Mapping, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from tenantvault.backends.base import Item, StorageBackend
from tenantvault.exceptions import BackendError
from tenantvault.types import TableRef

logger = logging.getLogger(__name__)

# Refresh assumed-role credentials this long before they expire
_EXPIRY_MARGIN = timedelta(seconds=60)


class AssumedRoleSessions:
    """Caches assumed-role credentials per (remote AWS account, tenant account).

    boto3 resources are not thread-safe, so each worker thread builds its own
    resource from the shared credentials.

    Args:
        role_name: Role assumed in each remote AWS account.
        region: AWS region of the remote tables.
        duration_seconds: Requested lifetime of the temporary credentials.
        sts_client: Injected STS client; created lazily when omitted.
    """

    def __init__(
        self,
        role_name: str,
        region: str,
        duration_seconds: int = 3600,
        sts_client: Any = None,
    ) -> None:
        self.role_name = role_name
        self.region = region
        self.duration_seconds = duration_seconds
        self._sts = sts_client
        self._credentials: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._local = threading.local()

    def _sts_client(self):
        if self._sts is None:
            self._sts = boto3.client("sts", region_name=self.region)
        return self._sts

    def _credentials_for(
        self, cache_key: str, remote_account_id: str, account_id: Optional[str],
    ) -> dict[str, Any]:
        with self._lock:
            cached = self._credentials.get(cache_key)
            if cached and cached["Expiration"] - _EXPIRY_MARGIN > datetime.now(timezone.utc):
                return cached

            role_arn = f"arn:aws:iam::{remote_account_id}:role/{self.role_name}"
            session_name = f"tenantvault-{account_id or 'admin'}-{int(time.time())}"
            logger.info("Assuming role %s for account %s", role_arn, account_id)
            response = self._sts_client().assume_role(
                RoleArn=role_arn,
                RoleSessionName=session_name[:64],
                DurationSeconds=self.duration_seconds,
            )
            creds = response.get("Credentials")
            if not creds:
                raise BackendError(
                    f"STS AssumeRole returned no credentials for {role_arn}",
                    operation="assume_role",
                )

            expiration = creds["Expiration"]
            if expiration.tzinfo is None:
                expiration = expiration.replace(tzinfo=timezone.utc)
            creds = {**creds, "Expiration": expiration}
            self._credentials[cache_key] = creds
            return creds

    def resource_for(self, remote_account_id: str, account_id: Optional[str]) -> Any:
        """DynamoDB resource authenticated into *remote_account_id* for the calling thread."""
        cache_key = f"{remote_account_id}:{account_id or ''}"
        creds = self._credentials_for(cache_key, remote_account_id, account_id)

        resources = getattr(self._local, "resources", None)
        if resources is None:
            resources = self._local.resources = {}
        cached = resources.get(cache_key)
        # Rebuilt whenever the credentials were refreshed
        if cached and cached[0] is creds:
            return cached[1]

        session = boto3.session.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            region_name=self.region,
        )
        resource = session.resource("dynamodb")
        resources[cache_key] = (creds, resource)
        return resource

    def clear(self) -> None:
        with self._lock:
            self._credentials.clear()
        self._local.resources = {}


class DynamoDBBackend(StorageBackend):
    """Key/value backend over DynamoDB tables keyed by ``PK`` / ``SK``.

    Args:
        region: Region of the local tables.
        endpoint_url: Optional local DynamoDB endpoint.
        sessions: Cross-account session cache for tenant-owned tables.
        resource: Injected boto3 DynamoDB resource for local tables, shared by
            every thread. Without one, each worker thread builds its own.
    """

    supports_user_index_records = True

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        sessions: Optional[AssumedRoleSessions] = None,
        resource: Any = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._sessions = sessions
        self._resource = resource
        self._local = threading.local()

    @classmethod
    def from_config(cls, cfg) -> "DynamoDBBackend":
        sessions = AssumedRoleSessions(
            role_name=cfg.cross_account_role_name,
            region=cfg.aws_region,
            duration_seconds=cfg.assume_role_duration,
        )
        return cls(region=cfg.aws_region, endpoint_url=cfg.dynamodb_endpoint, sessions=sessions)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _local_resource(self) -> Any:
        if self._resource is not None:
            return self._resource
        resource = getattr(self._local, "resource", None)
        if resource is None:
            logger.debug("Initializing DynamoDB resource (region=%s, endpoint=%s)",
                         self.region, self.endpoint_url)
            kwargs: dict[str, Any] = {"region_name": self.region}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            resource = boto3.session.Session().resource("dynamodb", **kwargs)
            self._local.resource = resource
        return resource

    def _table(self, ref: TableRef) -> Any:
        if ref.remote_account_id:
            if self._sessions is None:
                raise BackendError(
                    f"Table {ref.name} lives in AWS account {ref.remote_account_id} "
                    "but no cross-account sessions are configured",
                    table=ref.name,
                )
            return self._sessions.resource_for(ref.remote_account_id, ref.account_id).Table(ref.name)
        return self._local_resource().Table(ref.name)

    async def _run(self, ref: TableRef, operation: str, call: Callable[[Any], Any]) -> Any:
        def work():
            return call(self._table(ref))

        try:
            return await asyncio.to_thread(work)
        except (ClientError, BotoCoreError) as exc:
            logger.error("DynamoDB %s on %s failed: %s", operation, ref.name, exc)
            raise BackendError(
                f"DynamoDB {operation} on {ref.name} failed: {exc}",
                table=ref.name,
                operation=operation,
            ) from exc

    @staticmethod
    def _collect_pages(fetch: Callable[..., dict], kwargs: dict) -> list[Item]:
        items: list[Item] = []
        while True:
            resp = fetch(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs = {**kwargs, "ExclusiveStartKey": last_key}

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def get(self, table: TableRef, key: Mapping[str, Any]) -> Optional[Item]:
        resp = await self._run(table, "get_item", lambda t: t.get_item(Key=dict(key)))
        return resp.get("Item")

    async def put(self, table: TableRef, item: Item) -> Item:
        await self._run(table, "put_item", lambda t: t.put_item(Item=item))
        return item

    async def update(
        self, table: TableRef, key: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Optional[Item]:
        if not changes:
            return await self.get(table, key)

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments: list[str] = []
        for i, (attr, value) in enumerate(changes.items()):
            names[f"#f{i}"] = attr
            values[f":v{i}"] = value
            assignments.append(f"#f{i} = :v{i}")

        # Condition keeps update from creating an item that did not exist
        names["#pk"] = "PK"

        def call(t):
            try:
                return t.update_item(
                    Key=dict(key),
                    UpdateExpression="SET " + ", ".join(assignments),
                    ConditionExpression="attribute_exists(#pk)",
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                    ReturnValues="ALL_NEW",
                )
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                    return {}
                raise

        resp = await self._run(table, "update_item", call)
        return resp.get("Attributes")

    async def delete(self, table: TableRef, key: Mapping[str, Any]) -> bool:
        resp = await self._run(
            table, "delete_item",
            lambda t: t.delete_item(Key=dict(key), ReturnValues="ALL_OLD"),
        )
        return bool(resp.get("Attributes"))

    async def query_by_key_prefix(
        self, table: TableRef, partition_key: str, sk_prefix: str = "",
    ) -> list[Item]:
        condition = Key("PK").eq(partition_key)
        if sk_prefix:
            condition = condition & Key("SK").begins_with(sk_prefix)
        return await self._run(
            table, "query",
            lambda t: self._collect_pages(t.query, {"KeyConditionExpression": condition}),
        )

    async def scan_by_attribute(
        self, table: TableRef, attributes: Mapping[str, Any],
    ) -> list[Item]:
        kwargs: dict[str, Any] = {}
        if attributes:
            kwargs["FilterExpression"] = reduce(
                lambda acc, cond: acc & cond,
                [Attr(name).eq(value) for name, value in attributes.items()],
            )
        return await self._run(table, "scan", lambda t: self._collect_pages(t.scan, kwargs))

    async def close(self) -> None:
        if self._sessions is not None:
            self._sessions.clear()
