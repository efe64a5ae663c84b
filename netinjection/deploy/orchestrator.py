"""Dependent-resource provisioning workflow."""
import logging
from typing import Callable, List, Optional, Sequence

from .errors import (
    BackendError,
    BaseDeploymentFailed,
    ConfirmationRequired,
    DependentDeploymentFailed,
    DependentFailureKind,
    DeploymentIncomplete,
    DeploymentNotFound,
    InvalidRunState,
    RecordCorrupted,
)
from .models import (
    BASE_OUTPUT_ROLES,
    ENTERPRISE_POLICY_TYPE,
    REQUIRED_BASE_OUTPUTS,
    RESOURCE_GROUP_OUTPUT,
    DeploymentError,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    ProvisioningRecord,
    ResourceHandle,
    ReversalFailure,
    ReversalOptions,
    ReversalResult,
    RunState,
    Scope,
)
from .parameters import BaseParameters, PolicyParameters
from .renderer import TemplateLibrary
from ..backend.base import ProvisioningBackend
from ..state.store import ResultStore

logger = logging.getLogger(__name__)

BASE_TEMPLATE = "base"
POLICY_TEMPLATE = "policy"

ConfirmCallback = Callable[[Scope, Sequence[ResourceHandle]], bool]


class DeploymentOrchestrator:
    """Runs one provisioning run against a single resource group.

    State machine: Idle -> BaseSubmitted -> BaseSucceeded | BaseFailed, then
    BaseSucceeded -> DependentSubmitted -> Complete | DependentFailed. The
    record is written only after the backend confirms the base deployment,
    and gains the dependent name only after that deployment succeeds.
    """

    def __init__(
        self,
        backend: ProvisioningBackend,
        store: ResultStore,
        scope: Scope,
        templates: Optional[TemplateLibrary] = None,
        template_context: Optional[dict] = None,
        max_name_attempts: int = 5,
        timeout: Optional[float] = None,
        dependent_type: str = ENTERPRISE_POLICY_TYPE,
    ):
        """Initialize the orchestrator.

        Args:
            backend: Control-plane implementation.
            store: Local record persistence.
            scope: Resource group scope of the run; `location` is where the
                resource group is created.
            templates: Template renderer.
            template_context: Extra render variables (address spaces, tags,
                policy location).
            max_name_attempts: Bound on generated names per dependent deployment.
            timeout: Per-deployment deadline in seconds.
            dependent_type: Resource type enumerated and deleted on reversal.
        """
        if max_name_attempts < 1:
            raise ValueError("max_name_attempts must be at least 1")
        self.backend = backend
        self.store = store
        self.scope = scope
        self.templates = templates or TemplateLibrary()
        self.template_context = dict(template_context or {})
        self.max_name_attempts = max_name_attempts
        self.timeout = timeout
        self.dependent_type = dependent_type
        self.state = RunState.IDLE
        self.record: Optional[ProvisioningRecord] = None

    def build_base_request(self, parameters: BaseParameters) -> DeploymentRequest:
        template = self.templates.render(BASE_TEMPLATE, **self.template_context)
        return DeploymentRequest(
            template_ref=BASE_TEMPLATE,
            scope=self.scope,
            parameters=parameters.to_arm(),
            template=template,
            timeout=self.timeout,
        )

    def provision_base(self, request: DeploymentRequest) -> DeploymentResult:
        """Submit the base deployment and persist its outputs.

        Raises:
            BaseDeploymentFailed: If the backend reports anything but success.
            DeploymentIncomplete: If a required output is missing.
            ProvisioningTimeout: If the request's deadline passes.
        """
        self.state = RunState.BASE_SUBMITTED
        logger.info("Deploying base template to %s", request.scope)
        result = self.backend.deploy(request)

        if not result.succeeded:
            self.state = RunState.BASE_FAILED
            raise BaseDeploymentFailed(
                f"Base deployment {request.deployment_name} ended {result.status.value}", result.error
            )

        try:
            record = self._record_from_outputs(result)
        except DeploymentIncomplete:
            self.state = RunState.BASE_FAILED
            raise

        self.record = record
        self.store.save(record)
        self.state = RunState.BASE_SUCCEEDED
        logger.info("Base deployment succeeded in %s", record.resource_group_name)
        return result

    def _record_from_outputs(self, result: DeploymentResult) -> ProvisioningRecord:
        missing = [name for name in REQUIRED_BASE_OUTPUTS if not result.outputs.get(name)]
        if missing:
            raise DeploymentIncomplete(missing, BASE_TEMPLATE)

        resource_group_name = result.outputs[RESOURCE_GROUP_OUTPUT]
        record = ProvisioningRecord(
            resource_group_name=resource_group_name,
            base_resource_ids={role: result.outputs[output] for output, role in BASE_OUTPUT_ROLES.items()},
        )
        return record.with_dependent(self._surviving_dependent(resource_group_name))

    def _surviving_dependent(self, resource_group_name: str) -> Optional[str]:
        """Dependent name from an earlier record for this group, if it still exists."""
        try:
            previous = self.store.load()
        except RecordCorrupted as e:
            logger.warning("Ignoring unreadable record: %s", e)
            return None
        if previous is None or previous.resource_group_name != resource_group_name:
            return None
        name = previous.dependent_resource_name
        if not name:
            return None
        try:
            exists = self.backend.resource_exists(self.scope, self.dependent_type, name)
        except BackendError as e:
            logger.warning("Could not verify %s '%s', dropping it from the record: %s", self.dependent_type, name, e)
            return None
        return name if exists else None

    def provision_dependent(
        self, base_result: DeploymentResult, name_generator: Callable[[], str]
    ) -> DeploymentResult:
        """Deploy the enterprise policy that references the base networks.

        A name collision is retried with a fresh generated name, up to
        `max_name_attempts` names in total.

        Raises:
            InvalidRunState: If the base deployment has not succeeded in this run.
            DependentDeploymentFailed: On any backend failure or once every
                attempted name collided.
            DeploymentIncomplete: If the base outputs lack what the policy needs.
        """
        if self.state != RunState.BASE_SUCCEEDED or not base_result.succeeded:
            raise InvalidRunState(
                "Dependent deployment requires a succeeded base deployment",
                f"run state is {self.state.value}, base result is {base_result.status.value}",
            )

        template = self.templates.render(POLICY_TEMPLATE, **self.template_context)
        tried: List[str] = []
        self.state = RunState.DEPENDENT_SUBMITTED

        try:
            result = self._deploy_dependent(template, base_result, name_generator, tried)
        except BackendError as e:
            self.state = RunState.DEPENDENT_FAILED
            error = DeploymentError(code=e.code or BackendError.kind, message=str(e))
            raise DependentDeploymentFailed(DependentFailureKind.BACKEND_ERROR, error, tried) from e
        except Exception:
            self.state = RunState.DEPENDENT_FAILED
            raise

        self.state = RunState.COMPLETE
        return result

    def _deploy_dependent(
        self,
        template: dict,
        base_result: DeploymentResult,
        name_generator: Callable[[], str],
        tried: List[str],
    ) -> DeploymentResult:
        last_error = None

        while len(tried) < self.max_name_attempts:
            name = self._fresh_name(name_generator, tried)
            if name is None:
                break
            tried.append(name)

            if self.backend.resource_exists(self.scope, self.dependent_type, name):
                logger.warning("Generated name %s already exists, drawing another", name)
                continue

            try:
                parameters = PolicyParameters.from_base_outputs(name, base_result.outputs)
            except ValueError as e:
                error = DeploymentError(code="InvalidBaseOutput", message=str(e))
                raise DependentDeploymentFailed(DependentFailureKind.BACKEND_ERROR, error, tried) from e
            request = DeploymentRequest(
                template_ref=POLICY_TEMPLATE,
                scope=self.scope,
                parameters=parameters.to_arm(),
                template=template,
                timeout=self.timeout,
            )
            logger.info("Deploying %s '%s' (attempt %d/%d)", self.dependent_type, name, len(tried), self.max_name_attempts)
            result = self.backend.deploy(request)

            if result.succeeded:
                self._record_dependent(name, base_result)
                return result

            last_error = result.error
            if last_error is not None and last_error.is_name_collision:
                logger.warning("Name %s collided (%s), retrying with a new name", name, last_error.code)
                continue

            raise DependentDeploymentFailed(DependentFailureKind.BACKEND_ERROR, last_error, tried)

        raise DependentDeploymentFailed(DependentFailureKind.NAME_COLLISION, last_error, tried)

    @staticmethod
    def _fresh_name(name_generator: Callable[[], str], tried: List[str]) -> Optional[str]:
        # A small suffix range can repeat; bound the redraws so a constant generator cannot spin
        for _ in range(100):
            name = name_generator()
            if name not in tried:
                return name
        return None

    def _record_dependent(self, name: str, base_result: DeploymentResult) -> None:
        record = self.record
        if record is None:
            record = self._record_from_outputs(base_result)
        self.record = record.with_dependent(name)
        self.store.save(self.record)
        logger.info("Recorded %s '%s'", self.dependent_type, name)

    def reverse(
        self,
        record: Optional[ProvisioningRecord],
        options: ReversalOptions,
        resource_group: Optional[str] = None,
        confirm: Optional[ConfirmCallback] = None,
    ) -> ReversalResult:
        """Tear down what a provisioning run created.

        Dependent resources are found by type inside the resource group, so a
        stale or missing record still finds them. Per-item deletion failures
        are collected, and the resource group deletion is still submitted.
        The group deletion is returned as a handle rather than awaited.

        Raises:
            ValueError: If neither the record nor `resource_group` names a scope.
            ConfirmationRequired: If not forced and no `confirm` callback is given.
            BackendError: If listing or the resource group deletion fails.
        """
        resource_group = resource_group or (record.resource_group_name if record else None)
        if not resource_group:
            raise ValueError("No resource group to reverse: record is missing and none was given")
        scope = Scope(self.scope.subscription_id, resource_group)
        result = ReversalResult(scope=scope)

        if not self.backend.scope_exists(scope):
            logger.info("Resource group %s does not exist", resource_group)
            result.scope_existed = False
            self._forget(resource_group)
            return result

        dependents: List[ResourceHandle] = []
        if options.include_dependent:
            dependents = self.backend.list_resources(scope, self.dependent_type)

        if not options.force:
            if confirm is None:
                raise ConfirmationRequired(f"Deleting {resource_group} needs confirmation or force")
            if not confirm(scope, dependents):
                logger.info("Teardown of %s cancelled", resource_group)
                result.cancelled = True
                return result

        for handle in dependents:
            try:
                self.backend.delete_resource(handle)
                result.deleted.append(handle)
            except BackendError as e:
                logger.warning("Could not delete %s: %s", handle.name, e)
                result.failures.append(ReversalFailure(handle=handle, message=str(e), code=e.code))

        result.scope_deletion = self.backend.delete_scope(scope)
        self._forget(resource_group)
        self.record = None
        self.state = RunState.IDLE
        return result

    def _forget(self, resource_group: str) -> None:
        """Clear the stored record unless it belongs to another resource group."""
        try:
            stored = self.store.load()
        except RecordCorrupted:
            stored = None
        if stored is None or stored.resource_group_name == resource_group:
            self.store.clear()

    def reconcile(self, record: Optional[ProvisioningRecord] = None) -> DeploymentResult:
        """Re-read the base deployment from the backend after an interrupted run.

        Raises:
            DeploymentNotFound: If the backend has no base deployment in the scope.
        """
        resource_group = self.scope.resource_group or (record.resource_group_name if record else None)
        if not resource_group:
            raise ValueError("No resource group to reconcile")
        scope = Scope(self.scope.subscription_id, resource_group, self.scope.location)
        deployment_name = DeploymentRequest(template_ref=BASE_TEMPLATE, scope=scope).deployment_name

        result = self.backend.get_deployment(scope, deployment_name)
        if result is None:
            raise DeploymentNotFound(f"No deployment {deployment_name} in {scope}")

        if result.status == DeploymentStatus.RUNNING:
            self.state = RunState.BASE_SUBMITTED
        elif result.succeeded:
            self.scope = scope
            try:
                self.record = self._record_from_outputs(result)
            except DeploymentIncomplete:
                self.state = RunState.BASE_FAILED
                raise
            self.store.save(self.record)
            self.state = RunState.BASE_SUCCEEDED
        else:
            self.state = RunState.BASE_FAILED
        logger.info("Deployment %s is %s", deployment_name, result.status.value)
        return result
