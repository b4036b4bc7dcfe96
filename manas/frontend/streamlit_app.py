from datetime import date

import altair as alt
import pandas as pd
import requests
import streamlit as st

st.set_page_config(page_title="Manas Svasthya", page_icon="🧠", layout="centered")

API_BASE = st.text_input("API base URL", value="http://127.0.0.1:8000")
MOODS = ["😊", "😐", "😔", "😡", "😴"]

if "token" not in st.session_state:
    st.session_state.token = None
if "assessment" not in st.session_state:
    st.session_state.assessment = None
if "last_step" not in st.session_state:
    st.session_state.last_step = None


def api_headers() -> dict:
    if st.session_state.token:
        return {"Authorization": f"Bearer {st.session_state.token}"}
    return {}


def api_url(path: str) -> str:
    return f"{API_BASE}{path}"


def safe_json(resp: requests.Response):
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def show_response_error(resp: requests.Response, path: str, fallback_message: str) -> None:
    payload = safe_json(resp)
    if payload and isinstance(payload, dict):
        detail = payload.get("detail", fallback_message)
        if resp.status_code == 429 and resp.headers.get("Retry-After"):
            detail = f"{detail} Retry in {int(resp.headers['Retry-After']) // 60} min."
        st.error(f"{fallback_message} ({resp.status_code}) | {detail}")
        return
    text = (resp.text or "").strip()
    st.error(f"{fallback_message} ({resp.status_code}) | {api_url(path)} | {text[:500] if text else 'No response body.'}")


def api_request(method: str, path: str, **kwargs):
    # Assessment scoring and chat may wait on the model.
    try:
        return requests.request(method, api_url(path), headers=api_headers(), timeout=60, **kwargs)
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None


def api_get(path: str, params=None):
    return api_request("GET", path, params=params)


def api_post(path: str, json=None, data=None, files=None):
    return api_request("POST", path, json=json, data=data, files=files)


def show_crisis(crisis: dict) -> None:
    st.error(crisis.get("message", "Please reach out for support right now."))
    for resource in crisis.get("resources", []):
        st.markdown(f"**{resource['name']}**: {resource['contact']} ({resource['availability']})")
    for step in crisis.get("next_steps", []):
        st.markdown(f"- {step}")


def show_result(result: dict) -> None:
    cols = st.columns(4)
    cols[0].metric("Stress", result["stress"])
    cols[1].metric("Anxiety", result["anxiety"])
    cols[2].metric("Sleep quality", result["sleep"])
    cols[3].metric("Overall", result["overall_score"], help=f"Stress level: {result['stress_level']}")
    if result.get("method") == "heuristic":
        st.caption("Scored offline from your answers.")
    category_df = pd.DataFrame(
        [{"area": key.replace("_", " ").title(), "score": value} for key, value in result["category_scores"].items()]
    )
    chart = alt.Chart(category_df).mark_bar().encode(
        x=alt.X("score:Q", scale=alt.Scale(domain=[0, 100]), title="Concern"),
        y=alt.Y("area:N", sort="-x", title=None),
    )
    st.altair_chart(chart, use_container_width=True)
    st.markdown("**Insights**")
    for item in result.get("insights", []):
        st.markdown(f"- {item}")
    st.markdown("**Recommendations**")
    for item in result.get("recommendations", []):
        st.markdown(f"- {item}")
    if result.get("strengths"):
        st.markdown("**Strengths**: " + "; ".join(result["strengths"]))
    if result.get("activities"):
        st.markdown("**Try this week**: " + ", ".join(f"{a['name']} ({a['duration']})" for a in result["activities"]))
    if result.get("encouragement"):
        st.success(result["encouragement"])


st.title("Manas Svasthya")
st.caption("Not a diagnosis. If you feel unsafe call KIRAN at 1800-599-0019 or emergency services at 112.")

health_resp = api_get("/health")
if health_resp is None:
    st.error("Backend check failed. Start backend with: uvicorn manas.backend.app.main:app --reload --port 8000")
elif health_resp.ok:
    payload = safe_json(health_resp) or {}
    message = f"Backend healthy | version {payload.get('version', '?')}"
    if not payload.get("ai_configured"):
        message += " | AI offline, using built-in fallbacks"
    st.success(message)
else:
    show_response_error(health_resp, "/health", "Backend unhealthy.")

account_tab, assessment_tab, journal_tab, chat_tab, resources_tab = st.tabs(
    ["Account", "Assessment", "Mood & Journal", "Chat", "Resources"]
)

with account_tab:
    st.subheader("Sign up")
    with st.form("register_form"):
        reg_name = st.text_input("Display name", key="reg_name")
        reg_email = st.text_input("Email", key="reg_email")
        reg_password = st.text_input("Password", type="password", key="reg_password")
        if st.form_submit_button("Create account"):
            if not reg_email or not reg_password:
                st.warning("Enter an email and password.")
            else:
                resp = api_post(
                    "/auth/register",
                    json={"email": reg_email, "password": reg_password, "display_name": reg_name},
                )
                if resp is not None and resp.ok:
                    st.session_state.token = (safe_json(resp) or {}).get("access_token")
                    st.success("Account created. You are signed in.")
                elif resp is not None:
                    show_response_error(resp, "/auth/register", "Registration failed.")

    st.subheader("Login")
    with st.form("login_form"):
        login_email = st.text_input("Email", key="login_email")
        login_password = st.text_input("Password", type="password", key="login_password")
        if st.form_submit_button("Sign in"):
            resp = api_post("/auth/login", data={"username": login_email, "password": login_password})
            if resp is not None and resp.ok:
                st.session_state.token = (safe_json(resp) or {}).get("access_token")
                st.success("Signed in.")
            elif resp is not None:
                show_response_error(resp, "/auth/login", "Login failed.")

    if st.session_state.token:
        profile_resp = api_get("/users/me")
        if profile_resp is not None and profile_resp.ok:
            profile = profile_resp.json()
            st.subheader("Profile")
            with st.form("profile_form"):
                name = st.text_input("Display name", value=profile.get("display_name") or "")
                college = st.text_input("College", value=profile.get("college") or "")
                year = st.text_input("Year of study", value=profile.get("year_of_study") or "")
                if st.form_submit_button("Save profile"):
                    resp = api_request(
                        "PUT", "/users/me", json={"display_name": name, "college": college, "year_of_study": year}
                    )
                    if resp is not None and resp.ok:
                        st.success("Profile saved.")
                    elif resp is not None:
                        show_response_error(resp, "/users/me", "Could not save profile.")
            avatar = st.file_uploader("Profile picture", type=["png", "jpg", "jpeg", "gif", "webp"])
            if avatar is not None and st.button("Upload picture"):
                resp = api_post("/users/me/avatar", files={"file": (avatar.name, avatar.getvalue(), avatar.type)})
                if resp is not None and resp.ok:
                    st.success("Picture updated.")
                elif resp is not None:
                    show_response_error(resp, "/users/me/avatar", "Upload failed.")

with assessment_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        session = st.session_state.assessment
        if session is None or session.get("status") != "active":
            if st.button("Start a new assessment"):
                resp = api_post("/assessments")
                if resp is not None and resp.ok:
                    st.session_state.assessment = resp.json()
                    st.session_state.last_step = None
                    st.rerun()
                elif resp is not None:
                    show_response_error(resp, "/assessments", "Could not start assessment.")

        step = st.session_state.last_step
        if step and step.get("crisis"):
            show_crisis(step["crisis"])
        elif step and step.get("result"):
            show_result(step["result"])

        if session and session.get("status") == "active" and session.get("current_question"):
            question = session["current_question"]
            st.progress(min(1.0, session["answered_count"] / 20), text=f"Question {session['answered_count'] + 1}")
            with st.form(f"question_{question['id']}"):
                st.markdown(f"**{question['text']}**")
                choice = st.radio("Your answer", question["options"], index=None)
                note = st.text_area("Anything you'd like to add? (optional)")
                confidence = st.slider("How sure are you about this answer?", 0.0, 1.0, 1.0, 0.1)
                submitted = st.form_submit_button("Next")
            if submitted:
                if choice is None and not note.strip():
                    st.warning("Pick an option or write an answer.")
                else:
                    resp = api_post(
                        f"/assessments/{session['id']}/responses",
                        json={
                            "question_id": question["id"],
                            "answer": choice or note,
                            "value": question["options"].index(choice) if choice else None,
                            "confidence": confidence,
                            "note": note if choice else None,
                        },
                    )
                    if resp is not None and resp.ok:
                        body = resp.json()
                        st.session_state.assessment = body["session"]
                        st.session_state.last_step = body
                        st.rerun()
                    elif resp is not None:
                        show_response_error(resp, "/assessments", "Could not save answer.")
            cols = st.columns(2)
            if session["answered_count"] and cols[0].button("Finish now"):
                resp = api_post(f"/assessments/{session['id']}/complete")
                if resp is not None and resp.ok:
                    body = resp.json()
                    st.session_state.assessment = body
                    st.session_state.last_step = {"result": body["result"]}
                    st.rerun()
            if cols[1].button("Cancel assessment"):
                resp = api_post(f"/assessments/{session['id']}/cancel")
                if resp is not None and resp.ok:
                    st.session_state.assessment = resp.json()
                    st.session_state.last_step = None
                    st.rerun()

        history_resp = api_get("/assessments")
        if history_resp is not None and history_resp.ok and history_resp.json():
            history_df = pd.DataFrame([row for row in history_resp.json() if row["overall_score"] is not None])
            if not history_df.empty:
                st.subheader("Your progress")
                history_df["started_at"] = pd.to_datetime(history_df["started_at"])
                long_df = history_df.melt(
                    id_vars=["started_at"], value_vars=["stress", "anxiety", "sleep"], var_name="measure"
                )
                chart = alt.Chart(long_df).mark_line(point=True).encode(
                    x=alt.X("started_at:T", title="Date"),
                    y=alt.Y("value:Q", scale=alt.Scale(domain=[0, 100]), title="Score"),
                    color="measure:N",
                )
                st.altair_chart(chart, use_container_width=True)

with journal_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        st.subheader("How are you feeling today?")
        mood_note = st.text_input("Add a note (optional)", key="mood_note")
        mood_cols = st.columns(len(MOODS))
        for col, mood in zip(mood_cols, MOODS):
            if col.button(mood, key=f"mood_{mood}"):
                resp = api_post("/mood", json={"mood": mood, "note": mood_note, "entry_date": date.today().isoformat()})
                if resp is not None and resp.ok:
                    st.success(f"Logged {mood} for today.")
                    if resp.json().get("crisis"):
                        show_crisis(resp.json()["crisis"])
                elif resp is not None:
                    show_response_error(resp, "/mood", "Could not log mood.")
        if st.button("Clear today's mood"):
            resp = api_request("DELETE", f"/mood/{date.today().isoformat()}")
            if resp is not None and resp.ok:
                st.success("Removed today's mood.")
            elif resp is not None:
                show_response_error(resp, "/mood", "Could not remove mood.")
        mood_resp = api_get("/mood", params={"days": 30})
        if mood_resp is not None and mood_resp.ok and mood_resp.json():
            mood_df = pd.DataFrame(mood_resp.json())
            mood_df["entry_date"] = pd.to_datetime(mood_df["entry_date"])
            mood_df["level"] = mood_df["mood"].map({m: len(MOODS) - i for i, m in enumerate(MOODS)})
            chart = alt.Chart(mood_df).mark_text(size=22).encode(
                x=alt.X("entry_date:T", title="Date"),
                y=alt.Y("level:Q", axis=None),
                text="mood:N",
            )
            st.altair_chart(chart, use_container_width=True)

        st.subheader("Journal")
        with st.form("journal_form", clear_on_submit=True):
            title = st.text_input("Title (optional)")
            template_type = st.radio("Style", ["cute", "cool"], horizontal=True)
            content = st.text_area("Write freely. Only you can see this.", height=200)
            if st.form_submit_button("Save entry"):
                resp = api_post("/journal", json={"content": content, "title": title, "template_type": template_type})
                if resp is not None and resp.ok:
                    body = resp.json()
                    if body.get("crisis"):
                        show_crisis(body["crisis"])
                    summary = body["mood_summary"]
                    st.info(f"Mood: {summary['primary_mood']} | {summary.get('insights', '')}")
                elif resp is not None:
                    show_response_error(resp, "/journal", "Could not save entry.")
        entries_resp = api_get("/journal")
        if entries_resp is not None and entries_resp.ok:
            for entry in entries_resp.json()[:10]:
                label = entry.get("title") or entry["entry_date"]
                with st.expander(f"{label} · {entry['word_count']} words · {entry['mood_summary'].get('primary_mood', '')}"):
                    edited = st.text_area("Entry", entry["content"], key=f"journal_edit_{entry['id']}")
                    edit_col, delete_col = st.columns(2)
                    if edit_col.button("Save changes", key=f"journal_save_{entry['id']}"):
                        resp = api_request("PUT", f"/journal/{entry['id']}", json={"content": edited})
                        if resp is not None and resp.ok:
                            st.success("Entry updated.")
                            if resp.json().get("crisis"):
                                show_crisis(resp.json()["crisis"])
                        elif resp is not None:
                            show_response_error(resp, "/journal", "Could not update entry.")
                    if delete_col.button("Delete", key=f"journal_delete_{entry['id']}"):
                        resp = api_request("DELETE", f"/journal/{entry['id']}")
                        if resp is not None and resp.ok:
                            st.rerun()
                        elif resp is not None:
                            show_response_error(resp, "/journal", "Could not delete entry.")
        export_resp = api_get("/journal/export")
        if export_resp is not None and export_resp.ok:
            st.download_button(
                "Export journal",
                data=export_resp.content,
                file_name="manas_journal_export.json",
                mime="application/json",
            )

with chat_tab:
    if not st.session_state.token:
        st.warning("Sign in on the Account tab to continue.")
    else:
        messages_resp = api_get("/chat/messages")
        if messages_resp is not None and messages_resp.ok:
            for message in messages_resp.json():
                with st.chat_message("user" if message["role"] == "user" else "assistant"):
                    st.markdown(message["content"])
        prompt = st.chat_input("Share what's on your mind...")
        if prompt:
            resp = api_post("/chat/messages", json={"message": prompt})
            if resp is not None and resp.ok:
                st.rerun()
            elif resp is not None:
                show_response_error(resp, "/chat/messages", "Message failed.")
        if st.button("Clear conversation"):
            resp = api_request("DELETE", "/chat/messages")
            if resp is not None and resp.ok:
                st.rerun()

with resources_tab:
    category = st.selectbox("Category", ["all", "anxiety", "stress", "sleep", "depression"])
    resp = api_get("/resources", params=None if category == "all" else {"category": category})
    if resp is not None and resp.ok:
        for item in resp.json():
            st.markdown(f"**{item['title']}** · {item['type']} · {item['duration']}")
            st.caption(item["description"])
    st.subheader("Helplines")
    safety = api_get("/safety/resources")
    if safety is not None and safety.ok:
        st.table(pd.DataFrame(safety.json()["helplines"]))
