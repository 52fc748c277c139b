"""
Clinical record store: authorization, soft delete, read access.
"""

import pytest

from medvault.errors import (
    EmptyContentAddressError,
    IndexOutOfRangeError,
    NotOwnerError,
    PatientInactiveError,
    UnauthorizedError,
)
from medvault.messaging import EventType
from medvault.subject import new_subject


async def _add(dep, patient_id, caller, address="sha256-01", diagnosis="Flu"):
    return await dep.clinical_store.add_medical_record(
        address, "scan.pdf", patient_id, diagnosis, "Rest", caller=caller
    )


class TestAuthorizationCache:
    @pytest.mark.asyncio
    async def test_registry_registration_reaches_cache(self, make_deployment, enroll, doctor_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id=doctor_id)
        assert await dep.clinical_store.is_doctor_authorized(doctor_id) is True
        assert len(dep.event_bus.history(EventType.DOCTOR_AUTHORIZED.value)) == 1

    @pytest.mark.asyncio
    async def test_only_owner_or_registry_can_touch_cache(self, make_deployment, owner, doctor_id):
        dep = await make_deployment()
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.authorize_doctor(doctor_id, caller=doctor_id)
        await dep.clinical_store.authorize_doctor(doctor_id, caller=owner)
        assert await dep.clinical_store.is_doctor_authorized(doctor_id) is True

    @pytest.mark.asyncio
    async def test_revoke_uncached_doctor_is_noop(self, make_deployment, owner):
        dep = await make_deployment()
        await dep.clinical_store.revoke_doctor(new_subject(), caller=owner)
        assert dep.event_bus.history(EventType.DOCTOR_AUTHORIZATION_REVOKED.value) == []


class TestWrites:
    @pytest.mark.asyncio
    async def test_add_returns_sequential_indices(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        assert await _add(dep, patient_id, doctor_id) == 0
        assert await _add(dep, patient_id, doctor_id, "sha256-02") == 1

        records = await dep.clinical_store.get_medical_records(patient_id, caller=patient_id)
        assert [r.content_address for r in records] == ["sha256-01", "sha256-02"]
        assert all(r.doctor_id == doctor_id and r.is_active for r in records)

    @pytest.mark.asyncio
    async def test_unregistered_doctor_rejected(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        with pytest.raises(UnauthorizedError):
            await _add(dep, patient_id, new_subject())

    @pytest.mark.asyncio
    async def test_inactive_patient_rejected(self, make_deployment, enroll, owner, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        await dep.registry.deactivate_patient(patient_id, caller=owner)
        with pytest.raises(PatientInactiveError):
            await _add(dep, patient_id, doctor_id)
        with pytest.raises(PatientInactiveError):
            await _add(dep, new_subject(), doctor_id)

    @pytest.mark.asyncio
    async def test_blank_content_address_rejected(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        with pytest.raises(EmptyContentAddressError):
            await _add(dep, patient_id, doctor_id, address="   ")

    @pytest.mark.asyncio
    async def test_owner_relay_for_doctor(self, make_deployment, enroll, owner, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        index = await dep.clinical_store.add_medical_record_for(
            "sha256-03", "note.txt", patient_id, "Sprain", "Ice", doctor_id, caller=owner
        )
        records = await dep.clinical_store.get_medical_records(patient_id, caller=doctor_id)
        assert records[index].doctor_id == doctor_id

        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.add_medical_record_for(
                "sha256-04", "note.txt", patient_id, "Sprain", "Ice", doctor_id, caller=doctor_id
            )


class TestSoftDelete:
    @pytest.mark.asyncio
    async def test_deactivate_keeps_history(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        for n in range(3):
            await _add(dep, patient_id, doctor_id, f"sha256-0{n}")

        await dep.clinical_store.deactivate_record(patient_id, 1, caller=doctor_id)

        full = await dep.clinical_store.get_medical_records(patient_id, caller=patient_id)
        active = await dep.clinical_store.get_active_medical_records(patient_id, caller=patient_id)
        assert len(full) == 3
        assert full[1].is_active is False
        assert [r.content_address for r in active] == ["sha256-00", "sha256-02"]

    @pytest.mark.asyncio
    async def test_only_author_can_deactivate(self, make_deployment, enroll, owner, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        other = new_subject()
        await dep.registry.register_doctor(other, "Dr. Other", "GP", "LIC-2", caller=owner)
        await _add(dep, patient_id, doctor_id)

        with pytest.raises(NotOwnerError):
            await dep.clinical_store.deactivate_record(patient_id, 0, caller=other)
        with pytest.raises(IndexOutOfRangeError):
            await dep.clinical_store.deactivate_record(patient_id, 5, caller=doctor_id)
        with pytest.raises(IndexOutOfRangeError):
            await dep.clinical_store.deactivate_record(patient_id, -1, caller=doctor_id)


class TestReadAccess:
    @pytest.mark.asyncio
    async def test_strangers_cannot_read(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        await _add(dep, patient_id, doctor_id)

        stranger = new_subject()
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.get_medical_records(patient_id, caller=stranger)
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.get_record_count(patient_id, caller=stranger)
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.get_active_medical_records(patient_id, caller=stranger)

    @pytest.mark.asyncio
    async def test_registry_and_self_service_principals(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        await _add(dep, patient_id, doctor_id)

        assert await dep.clinical_store.get_record_count(patient_id, caller=dep.registry.address) == 1
        active = await dep.clinical_store.get_active_medical_records(
            patient_id, caller=dep.self_service_store.address
        )
        assert len(active) == 1
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.get_medical_records(patient_id, caller=dep.self_service_store.address)

    @pytest.mark.asyncio
    async def test_revoked_doctor_loses_read_access(self, make_deployment, enroll, owner, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        await _add(dep, patient_id, doctor_id)
        await dep.registry.revoke_doctor(doctor_id, caller=owner)
        with pytest.raises(UnauthorizedError):
            await dep.clinical_store.get_medical_records(patient_id, caller=doctor_id)

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        await _add(dep, patient_id, doctor_id)
        records = await dep.clinical_store.get_medical_records(patient_id, caller=patient_id)
        records[0].is_active = False
        records.clear()
        assert len(await dep.clinical_store.get_active_medical_records(patient_id, caller=patient_id)) == 1
