from __future__ import annotations
import streamlit as st
import pandas as pd

from intramail.config import load_settings
from intramail.errors.handlers import ErrorContext, error_boundary
from intramail.logging import setup_logging
from intramail.models import Account, Department, FolderKind, Priority, UserRole, View
from intramail.services import MailboxService

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Intramail",
    page_icon="✉️",
    layout="wide",
)

NAVIGATION = {
    "Dashboard": View.DASHBOARD,
    "Inbox": View.INBOX,
    "Sent": View.SENT,
    "Archive": View.ARCHIVE,
    "Memo Board": View.MEMO_BOARD,
    "Compose": View.COMPOSE,
    "Staff Directory": View.DIRECTORY,
    "Settings": View.SETTINGS,
    "Admin": View.ADMIN,
}

FOLDER_FOR_VIEW = {
    View.INBOX: FolderKind.INBOX,
    View.SENT: FolderKind.SENT,
    View.ARCHIVE: FolderKind.ARCHIVE,
}


def get_service() -> MailboxService:
    """One MailboxService per browser session."""
    if "mailbox" not in st.session_state:
        settings = load_settings()
        setup_logging(settings.log_level)
        st.session_state["mailbox"] = MailboxService(settings)
    return st.session_state["mailbox"]


def show_result(result, success_message: str) -> None:
    if result:
        st.success(success_message)
    else:
        st.error(result.error)


def messages_frame(messages, account_id: str) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "From": m.sender_id,
                "Subject": m.subject,
                "Priority": m.priority.value,
                "Received": m.created_at,
                "Read": m.is_read_by(account_id),
                "Attachments": len(m.attachments),
                "id": m.id,
            }
            for m in messages
        ],
        columns=["From", "Subject", "Priority", "Received", "Read", "Attachments", "id"],
    )


# ============================================================================
# LOGIN
# ============================================================================

def render_login(service: MailboxService) -> None:
    st.title("Intramail")
    st.caption("Hospital internal messaging")
    with st.form("login"):
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in")

    if submitted:
        result = service.login(username, password)
        if result:
            st.rerun()
        else:
            st.error(result.error)


# ============================================================================
# SIDEBAR
# ============================================================================

def render_sidebar(service: MailboxService) -> View:
    account = service.account
    with st.sidebar:
        st.markdown(f"**{account.name}**  \n{account.role} · {account.department}")
        if service.is_online:
            st.success("Online")
        else:
            st.warning(f"Offline mode · {service.pending_count} pending")
        if service.needs_password_change:
            st.warning("You are still using the default password. Change it under Settings.")

        label = st.radio("Navigate", list(NAVIGATION.keys()))
        if st.button("Refresh"):
            service.refresh()
        if st.button("Sign out"):
            service.logout()
            st.rerun()

    view = NAVIGATION[label]
    if st.session_state.get("view") != view:
        st.session_state["view"] = view
        service.set_view(view)
    return view


# ============================================================================
# VIEWS
# ============================================================================

@error_boundary(error_message="Could not load notifications")
def render_dashboard(service: MailboxService) -> None:
    st.header("Dashboard")
    notifications = service.notifications()
    if not notifications:
        st.info("No pending notifications.")
    for notification in notifications:
        st.warning(f"**{notification.title}** · {notification.message}")

    stats = service.fetch_stats()
    if stats:
        s = stats.data
        cols = st.columns(4)
        cols[0].metric("Active staff", s.active_accounts)
        cols[1].metric("Messages", s.total_messages)
        cols[2].metric("Circulars", s.total_memos)
        cols[3].metric("System health", s.health)
        if s.role_distribution:
            st.bar_chart(pd.DataFrame(s.role_distribution).set_index("name"))


def render_folder(service: MailboxService, kind: FolderKind) -> None:
    st.header(kind.value.title())
    result = service.fetch_folder(kind)
    if not result:
        st.error(result.error)
        return

    account_id = service.account.id
    frame = messages_frame(result.data, account_id)
    if frame.empty:
        st.info("No messages.")
        return
    st.dataframe(frame.drop(columns=["id"]), use_container_width=True)

    chosen = st.selectbox("Open message", frame["id"], format_func=lambda i: frame.set_index("id").at[i, "Subject"])
    message = next(m for m in result.data if m.id == chosen)
    st.subheader(message.subject)
    st.write(message.body)
    for attachment in message.attachments:
        st.markdown(f"📎 [{attachment.name}]({attachment.url}) ({attachment.size})")

    cols = st.columns(3)
    if kind == FolderKind.INBOX:
        if not message.is_read_by(account_id) and cols[0].button("Mark read"):
            service.mark_read(message.id)
            st.rerun()
        if cols[1].button("Archive"):
            service.toggle_archive(message.id, True)
            st.rerun()
        if cols[2].button("Mark all read"):
            service.mark_all_read()
            st.rerun()
    elif kind == FolderKind.ARCHIVE and cols[0].button("Move to inbox"):
        service.toggle_archive(message.id, False)
        st.rerun()


def render_memo_board(service: MailboxService) -> None:
    st.header("Memo Board")
    result = service.fetch_folder(FolderKind.MEMO)
    if not result:
        st.error(result.error)
        return

    account_id = service.account.id
    for memo in result.data:
        with st.container(border=True):
            st.markdown(f"**{memo.subject}** · {memo.priority.value}")
            st.write(memo.body)
            if memo.requires_acknowledgement:
                if memo.is_acknowledged_by(account_id):
                    st.caption("Acknowledged")
                elif st.button("Acknowledge", key=f"ack_{memo.id}"):
                    ack = service.acknowledge(memo.id)
                    if not ack:
                        st.error(ack.error)
                    st.rerun()


def render_compose(service: MailboxService) -> None:
    st.header("Compose")
    directory = service.list_accounts()
    accounts = directory.data if directory else []
    account = service.account

    as_memo = account.can_post_memos and st.checkbox("Post as circular")
    recipients = [] if as_memo else st.multiselect(
        "To",
        ["ALL_STAFF"] + [f"DEPT_{d.value}" for d in Department] + [a.id for a in accounts if a.id != account.id],
    )
    subject = st.text_input("Subject")
    body = st.text_area("Message")
    priority = st.selectbox("Priority", [p.value for p in Priority])
    requires_ack = as_memo and st.checkbox("Requires acknowledgement")
    upload = st.file_uploader("Attachment", type=["pdf", "doc", "docx", "xls", "xlsx", "jpg", "jpeg", "png"])

    if st.button("Send"):
        with ErrorContext("Sending message"), service.compose() as draft:
            if upload is not None:
                attached = service.add_compose_file(draft, upload.name, upload.getvalue(), upload.type)
                if not attached:
                    st.error(attached.error)
                    return
            message = draft.build(
                recipients, subject, body,
                priority=Priority(priority),
                as_memo=as_memo,
                requires_acknowledgement=requires_ack,
            )
            show_result(service.send(message), "Sent")


def render_directory(service: MailboxService) -> None:
    st.header("Staff Directory")
    result = service.list_accounts()
    if not result:
        st.error(result.error)
        return
    st.dataframe(
        pd.DataFrame([a.to_wire() for a in result.data]).drop(columns=["avatar"], errors="ignore"),
        use_container_width=True,
    )


def render_settings(service: MailboxService) -> None:
    st.header("Settings")
    with st.form("password"):
        old = st.text_input("Current password", type="password")
        new = st.text_input("New password", type="password")
        if st.form_submit_button("Change password"):
            result = service.change_password(old, new)
            show_result(result, "Password changed")

    with st.form("avatar"):
        avatar = st.text_input("Avatar URL", value=service.account.avatar or "")
        if st.form_submit_button("Update avatar"):
            result = service.update_avatar(avatar)
            show_result(result, "Avatar updated")


def render_admin(service: MailboxService) -> None:
    st.header("Administration")
    if service.account.role != UserRole.SUPER_ADMIN.value:
        st.info("Only the Super Administrator can manage accounts.")
        return

    with st.form("new_account"):
        name = st.text_input("Full name")
        username = st.text_input("Username")
        email = st.text_input("Email")
        role = st.selectbox("Role", [r.value for r in UserRole])
        department = st.selectbox("Department", [d.value for d in Department])
        if st.form_submit_button("Create account"):
            result = service.add_account(Account(
                id=f"u_{username.strip().lower()}",
                name=name,
                username=username.strip(),
                email=email.strip(),
                role=role,
                department=department,
            ))
            show_result(result, "Account created")

    directory = service.list_accounts()
    accounts = directory.data if directory else []
    with st.form("reset_password"):
        target = st.selectbox("Account", [a.id for a in accounts])
        new_password = st.text_input("New password", type="password")
        if st.form_submit_button("Reset password"):
            result = service.admin_reset_password(target, new_password)
            show_result(result, "Password reset")

    audit = service.audit_log()
    if audit:
        st.subheader("Audit log")
        st.dataframe(pd.DataFrame([vars(e) for e in audit.data]), use_container_width=True)


# ============================================================================
# MAIN
# ============================================================================

service = get_service()

if service.account is None:
    render_login(service)
else:
    current = render_sidebar(service)
    if current == View.DASHBOARD:
        render_dashboard(service)
    elif current in FOLDER_FOR_VIEW:
        render_folder(service, FOLDER_FOR_VIEW[current])
    elif current == View.MEMO_BOARD:
        render_memo_board(service)
    elif current == View.COMPOSE:
        render_compose(service)
    elif current == View.DIRECTORY:
        render_directory(service)
    elif current == View.SETTINGS:
        render_settings(service)
    elif current == View.ADMIN:
        render_admin(service)
