from conftest import appointment_data, doctor_data


async def test_create_doctor_adds_user_and_schedules(services):
    events = []
    services.bus.subscribe("doctor_profile_changed", events.append)
    services.bus.subscribe("user_changed", events.append)
    data = services.data

    doctor = await data.create_doctor_profile({**doctor_data(), "licenseNumber": "STR-001"})

    assert doctor.id.startswith("doctor_")
    assert doctor.license_number == "STR-001"
    user = await data.get_user(doctor.id)
    assert (user.role, user.email) == ("doctor", "sarah@hospital.com")
    assert len(await services.schedules.get_schedules_by_doctor(doctor.id)) > 0
    assert [e.name for e in events] == ["doctor_profile_changed", "user_changed"]


async def test_delete_doctor_removes_schedules(services):
    doctor = await services.data.create_doctor_profile(doctor_data())

    assert await services.data.delete_doctor_profile(doctor.id) is True
    assert await services.data.get_doctor_profile(doctor.id) is None
    assert await services.schedules.get_schedules_by_doctor(doctor.id) == []
    assert await services.data.delete_doctor_profile(doctor.id) is False


async def test_update_user_touches_timestamp_and_publishes(services):
    events = []
    services.bus.subscribe("user_changed", events.append)
    user = await services.data.create_user({"name": "Ann", "email": "ann@example.com", "role": "patient"})

    updated = await services.data.update_user(user.id, {"name": "Ann Lee", "id": "hijack"})

    assert updated.id == user.id
    assert updated.name == "Ann Lee"
    assert updated.updated_at >= user.updated_at
    assert [e.type for e in events] == ["create", "update"]
    assert await services.data.update_user("user_missing", {"name": "x"}) is None


async def test_get_user_by_email(services):
    await services.data.create_user({"name": "Ann", "email": "ann@example.com"})

    assert (await services.data.get_user_by_email("ann@example.com")).name == "Ann"
    assert await services.data.get_user_by_email("nobody@example.com") is None


async def test_medical_records_filtered_by_patient(services):
    data = services.data
    await data.create_medical_record(
        {"patientId": "patient_1", "title": "Blood test", "description": "Normal", "date": "2024-01-02", "type": "test_result"}
    )
    record = await data.create_medical_record(
        {"patientId": "patient_2", "title": "Flu", "description": "Rest", "date": "2024-01-03"}
    )

    assert len(await data.get_medical_records()) == 2
    assert [r.title for r in await data.get_medical_records("patient_1")] == ["Blood test"]
    assert record.type == "note"

    assert (await data.update_medical_record(record.id, {"description": "Rest and fluids"})).description == "Rest and fluids"
    assert await data.delete_medical_record(record.id) is True
    assert len(await data.get_medical_records()) == 1


async def test_messages(services):
    data = services.data
    message = await data.create_message(
        {"senderId": "doctor_1", "receiverId": "patient_1", "subject": "Results", "content": "All good"}
    )
    await data.create_message({"senderId": "admin_1", "receiverId": "doctor_1", "subject": "Hi", "content": "Welcome"})

    assert message.id.startswith("msg_")
    assert message.is_read is False
    assert len(await data.get_messages("doctor_1")) == 2
    assert len(await data.get_messages("patient_1")) == 1

    assert await data.mark_message_as_read(message.id) is True
    assert await data.mark_message_as_read("msg_missing") is False
    read = [m for m in await data.get_messages("patient_1")][0]
    assert read.is_read is True

    assert await data.delete_message(message.id) is True
    assert await data.get_messages("patient_1") == []


async def test_clinical_notes(services):
    data = services.data
    note = await data.create_clinical_note(
        {"doctorId": "doctor_1", "patientId": "patient_1", "diagnosis": "Hypertension", "treatment": "Diet", "notes": "Recheck"}
    )
    await data.create_clinical_note(
        {"doctorId": "doctor_2", "patientId": "patient_1", "diagnosis": "Asthma", "treatment": "Inhaler", "notes": ""}
    )

    assert len(await data.get_clinical_notes(patient_id="patient_1")) == 2
    assert [n.diagnosis for n in await data.get_clinical_notes(doctor_id="doctor_1")] == ["Hypertension"]

    updated = await data.update_clinical_note(note.id, {"followUp": "2 weeks"})
    assert updated.follow_up == "2 weeks"
    assert await data.delete_clinical_note(note.id) is True


async def test_statistics(services):
    data = services.data
    await data.create_user({"name": "P", "email": "p@example.com", "role": "patient"})
    await data.create_doctor_profile(doctor_data())
    await services.appointments.create_appointment(appointment_data())
    await services.appointments.create_appointment(appointment_data(status="approved"))
    await data.create_message({"senderId": "a", "receiverId": "b", "subject": "s", "content": "c"})

    stats = await data.get_statistics()

    assert stats == {
        "totalAppointments": 2,
        "pendingAppointments": 1,
        "approvedAppointments": 1,
        "totalPatients": 1,
        "totalDoctors": 1,
        "totalMedicalRecords": 0,
        "unreadMessages": 1,
        "totalClinicalNotes": 0,
    }


async def test_sync_appointment_data_publishes_full_list(services):
    events = []
    services.bus.subscribe("appointment_changed", events.append)
    await services.appointments.create_appointment(appointment_data())

    await services.data.sync_appointment_data()

    assert events[-1].type == "sync"
    assert len(events[-1].data) == 1


async def test_clear_all_data(services):
    await services.data.create_doctor_profile(doctor_data())
    await services.storage.insert_record("user_credentials", {"id": "x@y.com", "passwordHash": "hash"})
    await services.storage.set_value("user", {"email": "x", "role": "admin", "name": "X"})

    await services.data.clear_all_data()

    assert await services.data.get_users() == []
    assert await services.schedules.get_schedules() == []
    assert await services.storage.get_value("user") is None
    assert await services.storage.list_records("user_credentials") == []
