#tests\test_postgres_repository.py

"""Test the SQLAlchemy repositories against an in-memory SQLite database."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from build_engine.core.errors import JobLeaseError, RecordAlreadyExists, RecordNotFound
from build_engine.core.models import (
    Build,
    BuildJob,
    BuildPhase,
    BuildRequest,
    BuildStatus,
    Deployment,
    DeploymentStatus,
    JobState,
    Strategy,
    TenantDistribution,
    TenantProfile,
)
from build_engine.core.state_machine import BuildStateMachine, DeploymentStateMachine
from build_engine.infrastructure.postgres.database import drop_db, get_session_factory, init_db
from build_engine.infrastructure.postgres.repository import (
    PostgresBuildRepository,
    PostgresDeploymentRepository,
    PostgresJobQueue,
    PostgresTenantDirectory,
    PostgresTenantDistributionRepository,
)


@pytest.fixture
def test_engine():
    """Create test database engine."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture
def build_repository(test_session_factory):
    return PostgresBuildRepository(session_factory=test_session_factory)


@pytest.fixture
def deployment_repository(test_session_factory):
    return PostgresDeploymentRepository(session_factory=test_session_factory)


@pytest.fixture
def distribution_repository(test_session_factory):
    return PostgresTenantDistributionRepository(session_factory=test_session_factory)


@pytest.fixture
def directory(test_session_factory):
    return PostgresTenantDirectory(test_session_factory, enterprise_tenant_ids=["vip"])


@pytest.fixture
def sample_build():
    return Build(build_id="b1", tenant_id="t1", source_key="uploads/t1/b1.zip")


class TestPostgresBuildRepository:
    """Test build persistence."""

    # -------------------------
    # CREATE TESTS
    # -------------------------

    def test_create_and_get(self, build_repository, sample_build):
        """Test a created build reads back equal."""
        build_repository.create(sample_build)

        retrieved = build_repository.get("b1")

        assert retrieved.tenant_id == "t1"
        assert retrieved.status == BuildStatus.PENDING
        assert retrieved.version == sample_build.version
        assert retrieved.created_at.tzinfo is not None

    def test_create_duplicate_fails(self, build_repository, sample_build):
        """Test creating the same build twice raises."""
        build_repository.create(sample_build)

        with pytest.raises(RecordAlreadyExists):
            build_repository.create(sample_build)

    def test_get_missing(self, build_repository):
        """Test an unknown id returns None."""
        assert build_repository.get("missing") is None

    # -------------------------
    # UPDATE TESTS
    # -------------------------

    def test_update_status(self, build_repository, sample_build):
        """Test status and error fields are persisted."""
        build_repository.create(sample_build)
        BuildStateMachine.transition(sample_build, BuildStatus.BUILDING)
        BuildStateMachine.transition(
            sample_build, BuildStatus.FAILED, error_message="boom", error_phase=BuildPhase.BUILD
        )

        build_repository.update(sample_build)

        retrieved = build_repository.get("b1")
        assert retrieved.status == BuildStatus.FAILED
        assert retrieved.error_phase == BuildPhase.BUILD
        assert retrieved.error_message == "boom"
        assert retrieved.finished_at is not None

    def test_update_missing(self, build_repository, sample_build):
        """Test updating an unknown build raises."""
        with pytest.raises(RecordNotFound):
            build_repository.update(sample_build)

    # -------------------------
    # LIST TESTS
    # -------------------------

    def test_list_by_tenant(self, build_repository):
        """Test listing is per tenant, newest first, filterable by status."""
        now = datetime.now(timezone.utc)
        for i, tenant in enumerate(["t1", "t1", "t2"]):
            build_repository.create(Build(
                build_id=f"b{i}",
                tenant_id=tenant,
                source_key="k",
                created_at=now + timedelta(seconds=i),
            ))
        done = build_repository.get("b0")
        BuildStateMachine.transition(done, BuildStatus.BUILDING)
        BuildStateMachine.transition(done, BuildStatus.SUCCESS)
        build_repository.update(done)

        assert [b.build_id for b in build_repository.list_by_tenant("t1")] == ["b1", "b0"]
        assert [b.build_id for b in build_repository.list_by_tenant("t1", BuildStatus.SUCCESS)] == ["b0"]
        assert len(build_repository.list_by_tenant("t1", limit=1)) == 1


class TestPostgresDeploymentRepository:
    """Test deployment persistence."""

    def test_lifecycle(self, deployment_repository, sample_build):
        """Test create, activate and latest active lookup."""
        deployment = Deployment.for_build(sample_build)
        deployment_repository.create(deployment)
        assert deployment_repository.latest_active("t1") is None

        DeploymentStateMachine.transition(deployment, DeploymentStatus.ACTIVE)
        deployment.deployment_url = "https://t1.example.com/"
        deployment_repository.update(deployment)

        active = deployment_repository.latest_active("t1")
        assert active.deployment_id == deployment.deployment_id
        assert active.deployment_url == "https://t1.example.com/"
        assert deployment_repository.get_by_build("b1").status == DeploymentStatus.ACTIVE

    def test_update_missing(self, deployment_repository, sample_build):
        """Test updating an unknown deployment raises."""
        with pytest.raises(RecordNotFound):
            deployment_repository.update(Deployment.for_build(sample_build))


class TestPostgresTenantDistributionRepository:
    """Test distribution records."""

    def test_save_get_count_delete(self, distribution_repository):
        """Test upsert semantics and strategy counting."""
        record = TenantDistribution(
            tenant_id="t1",
            strategy=Strategy.INDIVIDUAL,
            distribution_id="E1",
            domain="d1.cloudfront.net",
        )
        distribution_repository.save(record)
        record.status = "Retired"
        distribution_repository.save(record)

        assert distribution_repository.get("t1").status == "Retired"
        assert distribution_repository.count_by_strategy(Strategy.INDIVIDUAL) == 1
        assert distribution_repository.count_by_strategy(Strategy.SHARED) == 0

        distribution_repository.delete("t1")
        assert distribution_repository.get("t1") is None


class TestPostgresTenantDirectory:
    """Test tenant profiles."""

    def test_fallback(self, directory):
        """Test unknown tenants get a fallback profile."""
        assert directory.get_profile("t1").subscription_tier == "standard"
        assert directory.get_profile("vip").subscription_tier == "enterprise"

    def test_put_and_get(self, directory):
        """Test a stored profile reads back equal."""
        profile = TenantProfile(
            tenant_id="t1",
            subscription_tier="premium",
            compliance_requirements=("data_isolation",),
            custom_domain="www.acme.io",
        )
        directory.put(profile)

        assert directory.get_profile("t1") == profile
        assert list(directory.all_profiles()) == [profile]

    def test_set_strategy_creates_profile(self, directory):
        """Test setting a preference for an unknown tenant stores a profile."""
        directory.set_deployment_strategy("vip", Strategy.INDIVIDUAL)

        profile = directory.get_profile("vip")
        assert profile.deployment_strategy == Strategy.INDIVIDUAL
        assert profile.subscription_tier == "enterprise"


class TestPostgresJobQueue:
    """Test the leased queue."""

    @pytest.fixture
    def now(self):
        return [datetime.now(timezone.utc) + timedelta(seconds=1)]

    @pytest.fixture
    def queue(self, test_session_factory, now):
        return PostgresJobQueue(test_session_factory, clock=lambda: now[0])

    def make_job(self, max_attempts=3):
        return BuildJob.for_request(
            BuildRequest(build_id="b1", tenant_id="t1", source_key="k"),
            max_attempts=max_attempts,
        )

    def test_enqueue_and_claim(self, queue):
        """Test a queued job is claimed once."""
        job = self.make_job()
        queue.enqueue(job)

        claimed = queue.claim_next("w1", 60)

        assert claimed.job_id == job.job_id
        assert claimed.state == JobState.CLAIMED
        assert claimed.attempts == 1
        assert claimed.payload["buildId"] == "b1"
        assert queue.claim_next("w2", 60) is None

    def test_duplicate_enqueue(self, queue):
        """Test enqueueing the same job twice raises."""
        job = self.make_job()
        queue.enqueue(job)

        with pytest.raises(RecordAlreadyExists):
            queue.enqueue(job)

    def test_complete(self, queue):
        """Test completing a held job."""
        job = self.make_job()
        queue.enqueue(job)
        queue.claim_next("w1", 60)

        queue.complete(job.job_id, "w1")

        assert queue.get(job.job_id).state == JobState.DONE

    def test_wrong_worker(self, queue):
        """Test another worker cannot settle the job."""
        job = self.make_job()
        queue.enqueue(job)
        queue.claim_next("w1", 60)

        with pytest.raises(JobLeaseError):
            queue.complete(job.job_id, "w2")

    def test_expired_lease_reclaimed(self, queue, now):
        """Test a lapsed lease is claimable again."""
        job = self.make_job()
        queue.enqueue(job)
        queue.claim_next("w1", 60)
        now[0] += timedelta(seconds=61)

        claimed = queue.claim_next("w2", 60)

        assert claimed.lease_owner == "w2"
        assert claimed.attempts == 2

    def test_expired_final_attempt_dead(self, queue, now):
        """Test a lapsed lease on the last attempt dead-letters the job."""
        job = self.make_job(max_attempts=1)
        queue.enqueue(job)
        queue.claim_next("w1", 60)
        now[0] += timedelta(seconds=61)

        assert queue.claim_next("w2", 60) is None
        assert queue.get(job.job_id).state == JobState.DEAD

    def test_expired_final_attempt_reported(self, queue, now):
        """Test the dead-lettered job is handed to on_dead after the claim commits."""
        dead = []
        queue.on_dead = lambda job: dead.append(queue.get(job.job_id))
        job = self.make_job(max_attempts=1)
        queue.enqueue(job)
        queue.claim_next("w1", 60)
        now[0] += timedelta(seconds=61)

        queue.claim_next("w2", 60)

        assert [j.job_id for j in dead] == [job.job_id]
        assert dead[0].state == JobState.DEAD
        assert dead[0].last_error == "worker lost lease on final attempt"

    def test_retry_later_and_dead_letter(self, queue, now):
        """Test re-queue with delay, then dead letter."""
        job = self.make_job()
        queue.enqueue(job)
        queue.claim_next("w1", 60)

        queue.retry_later(job.job_id, "w1", 30, "exit 1")
        assert queue.claim_next("w1", 60) is None

        now[0] += timedelta(seconds=30)
        queue.claim_next("w1", 60)
        queue.dead_letter(job.job_id, "w1", "gave up")

        stored = queue.get(job.job_id)
        assert stored.state == JobState.DEAD
        assert stored.last_error == "gave up"
        assert stored.attempts == 2
