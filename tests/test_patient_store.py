"""
Patient self-service store: profile, self records, third-party reads.
"""

import pytest

from medvault.errors import (
    AlreadyRegisteredError,
    EmptyContentAddressError,
    EmptyFieldError,
    EmptyFileNameError,
    IndexOutOfRangeError,
    NotFoundError,
    PatientInactiveError,
    UnauthorizedError,
)
from medvault.patient import PatientSelfServiceStore
from medvault.subject import new_subject


async def _upload(dep, caller, n):
    return await dep.self_service_store.upload_self_record(
        f"sha256-{n:02d}", f"file{n}.pdf", "lab", f"record {n}", caller=caller
    )


class TestProfile:
    @pytest.mark.asyncio
    async def test_inactive_caller_cannot_update_profile(self, make_deployment):
        dep = await make_deployment()
        with pytest.raises(PatientInactiveError):
            await dep.self_service_store.update_profile("A", "a@example.com", "1", caller=new_subject())

    @pytest.mark.asyncio
    async def test_update_profile_upserts_without_completing(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store

        with pytest.raises(NotFoundError):
            await store.get_my_profile(caller=patient_id)

        await store.update_profile("Alex", "alex@example.com", "555", caller=patient_id)
        await store.update_profile("Alex D", "alex@example.com", "556", caller=patient_id)
        profile = await store.get_my_profile(caller=patient_id)
        assert profile.name == "Alex D"
        assert profile.phone_number == "556"
        assert profile.profile_completed is False

    @pytest.mark.asyncio
    async def test_self_register_once(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store

        with pytest.raises(EmptyFieldError):
            await store.self_register("", "alex@example.com", "555", caller=patient_id)
        profile = await store.self_register("Alex", "alex@example.com", "555", caller=patient_id)
        assert profile.profile_completed is True
        with pytest.raises(AlreadyRegisteredError):
            await store.self_register("Alex", "alex@example.com", "555", caller=patient_id)

        # update_profile leaves the completion flag alone
        await store.update_profile("Alex", "new@example.com", "555", caller=patient_id)
        assert (await store.get_my_profile(caller=patient_id)).profile_completed is True


class TestSelfRecords:
    @pytest.mark.asyncio
    async def test_upload_validation(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store
        with pytest.raises(EmptyContentAddressError):
            await store.upload_self_record("", "f.pdf", "lab", "d", caller=patient_id)
        with pytest.raises(EmptyFileNameError):
            await store.upload_self_record("sha256-01", "", "lab", "d", caller=patient_id)
        with pytest.raises(PatientInactiveError):
            await store.upload_self_record("sha256-01", "f.pdf", "lab", "d", caller=new_subject())

    @pytest.mark.asyncio
    async def test_encrypted_flag_defaults_true(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store
        await store.upload_self_record("sha256-01", "a.pdf", "lab", "d", caller=patient_id)
        await store.upload_self_record("sha256-02", "b.pdf", "lab", "d", False, caller=patient_id)
        records = await store.get_my_self_records(caller=patient_id)
        assert [r.is_encrypted for r in records] == [True, False]

    @pytest.mark.asyncio
    async def test_delete_swaps_last_into_place(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store
        for n in range(3):
            assert await _upload(dep, patient_id, n) == n

        await store.delete_self_record(0, caller=patient_id)

        records = await store.get_my_self_records(caller=patient_id)
        assert [r.file_name for r in records] == ["file2.pdf", "file1.pdf"]
        assert await store.get_my_self_record_count(caller=patient_id) == 2

    @pytest.mark.asyncio
    async def test_delete_last_and_out_of_range(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store
        await _upload(dep, patient_id, 0)
        await store.delete_self_record(0, caller=patient_id)
        assert await store.get_my_self_record_count(caller=patient_id) == 0
        with pytest.raises(IndexOutOfRangeError):
            await store.delete_self_record(0, caller=patient_id)

    @pytest.mark.asyncio
    async def test_update_in_place(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        store = dep.self_service_store
        await _upload(dep, patient_id, 0)
        updated = await store.update_self_record(0, "imaging", "MRI follow-up", caller=patient_id)
        assert updated.record_type == "imaging"
        assert updated.content_address == "sha256-00"
        with pytest.raises(IndexOutOfRangeError):
            await store.update_self_record(3, "imaging", "x", caller=patient_id)

    @pytest.mark.asyncio
    async def test_records_are_scoped_to_caller(self, make_deployment, enroll, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        await _upload(dep, patient_id, 0)
        other = new_subject()
        assert await dep.self_service_store.get_my_self_records(caller=other) == []
        with pytest.raises(IndexOutOfRangeError):
            await dep.self_service_store.delete_self_record(0, caller=other)


class TestClinicalView:
    @pytest.mark.asyncio
    async def test_my_medical_records_are_active_only(self, make_deployment, enroll, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        for n in range(2):
            await dep.clinical_store.add_medical_record(
                f"sha256-{n}", "r.pdf", patient_id, "d", "t", caller=doctor_id
            )
        await dep.clinical_store.deactivate_record(patient_id, 0, caller=doctor_id)

        records = await dep.self_service_store.get_my_medical_records(caller=patient_id)
        assert [r.content_address for r in records] == ["sha256-1"]

    @pytest.mark.asyncio
    async def test_unset_clinical_store_is_unauthorized(self, owner, patient_id):
        store = PatientSelfServiceStore(owner)
        with pytest.raises(UnauthorizedError):
            await store.get_my_medical_records(caller=patient_id)

    @pytest.mark.asyncio
    async def test_failing_clinical_store_is_unauthorized(self, owner, patient_id):
        class Broken:
            address = new_subject()

            async def get_active_medical_records(self, patient_id, *, caller):
                raise ConnectionError("down")

        store = PatientSelfServiceStore(owner, clinical_store=Broken())
        with pytest.raises(UnauthorizedError):
            await store.get_my_medical_records(caller=patient_id)


class TestThirdPartyReads:
    @pytest.mark.asyncio
    async def test_viewers(self, make_deployment, enroll, owner, doctor_id, patient_id):
        dep = await make_deployment()
        await enroll(dep, doctor_id, patient_id)
        store = dep.self_service_store
        await store.self_register("Alex", "alex@example.com", "555", caller=patient_id)
        await _upload(dep, patient_id, 0)

        for viewer in (patient_id, owner, doctor_id):
            assert len(await store.get_patient_self_records(patient_id, caller=viewer)) == 1
            assert (await store.get_patient_profile(patient_id, caller=viewer)).name == "Alex"

        with pytest.raises(UnauthorizedError):
            await store.get_patient_self_records(patient_id, caller=new_subject())

        await dep.registry.revoke_doctor(doctor_id, caller=owner)
        with pytest.raises(UnauthorizedError):
            await store.get_patient_profile(patient_id, caller=doctor_id)

    @pytest.mark.asyncio
    async def test_missing_profile_is_not_found(self, make_deployment, enroll, owner, patient_id):
        dep = await make_deployment()
        await enroll(dep, patient_id=patient_id)
        with pytest.raises(NotFoundError):
            await dep.self_service_store.get_patient_profile(patient_id, caller=owner)
