from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Padoca Suprimentos",
    "quotation": "Cotacao",
    "order": "Pedido",
    "supplier": "Fornecedor",
    "inventory": "Estoque",
    "receipt": "Recebimento",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {
            "key": "pending",
            "label": "Aguardando envio",
            "description": "Cotacao criada e enviada ao fornecedor, sem confirmacao de leitura.",
        },
        {
            "key": "awaiting",
            "label": "Aguardando resposta",
            "description": "Fornecedor ainda nao respondeu com precos.",
        },
        {
            "key": "quoted",
            "label": "Cotada",
            "description": "Fornecedor respondeu com precos e prazo. Aguarda sua confirmacao.",
        },
        {
            "key": "confirmed",
            "label": "Confirmada",
            "description": "Pedido gerado a partir da cotacao.",
        },
        {
            "key": "delivered",
            "label": "Entregue",
            "description": "Mercadoria recebida e estoque reposto.",
        },
        {
            "key": "cancelled",
            "label": "Cancelada",
            "description": "Cotacao encerrada sem continuidade.",
        },
    ],
    "pedido": [
        {
            "key": "pending_confirmation",
            "label": "Aguardando confirmacao",
            "description": "Cotacao respondida aguardando aprovacao do pedido.",
        },
        {
            "key": "confirmed",
            "label": "Confirmado",
            "description": "Pedido aprovado e aguardando entrega.",
        },
        {
            "key": "delivered",
            "label": "Entregue",
            "description": "Pedido recebido.",
        },
        {
            "key": "cancelled",
            "label": "Cancelado",
            "description": "Pedido cancelado.",
        },
    ],
    "estoque": [
        {
            "key": "ok",
            "label": "Estoque ok",
            "description": "Quantidade acima da margem de seguranca.",
        },
        {
            "key": "warning",
            "label": "Estoque baixo",
            "description": "Quantidade ate 20% acima do minimo.",
        },
        {
            "key": "critical",
            "label": "Estoque critico",
            "description": "Quantidade abaixo do minimo.",
        },
    ],
}


TAB_LABELS: Dict[str, str] = {
    "pending": "Pendentes",
    "awaiting": "Aguardando",
    "orders": "Pedidos",
    "received": "Recebidos",
    "history": "Historico",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quotation_sent": "Cotacao enviada para {supplier_name}.",
        "quotation_resent": "Cotacao reenviada para {supplier_name}.",
        "quotation_deleted": "Cotacao removida.",
        "order_created": "Pedido {order_id} criado para {supplier_name}.",
        "order_approved": "Pedido {order_id} aprovado.",
        "receipt_confirmed": "Recebimento confirmado para {supplier_name}.",
        "email_connected": "Conta de email conectada.",
        "email_disconnected": "Conta de email desconectada.",
    },
    "notification": {
        "quotations_quoted": "{count} cotacao(oes) respondida(s) pelos fornecedores.",
        "quotations_auto_confirmed": "{count} cotacao(oes) confirmada(s) automaticamente.",
        "orders_delivered": "{count} pedido(s) marcado(s) como entregue(s) apos reposicao do estoque.",
    },
    "warning": {
        "email_send_failed": "Cotacao salva, mas o email para {supplier_email} nao foi enviado.",
        "remote_delete_failed": "Cotacao removida localmente, mas a exclusao remota falhou.",
        "remote_sync_failed": "Alteracao salva localmente, mas a sincronizacao remota falhou.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "duplicate_recent_quotation": "Ja existe uma cotacao identica enviada para este fornecedor na ultima hora.",
        "email_not_authorized": "A conta de email nao autorizou o envio. Conecte novamente.",
        "email_not_connected": "Nenhuma conta de email conectada.",
        "email_send_failed": "Falha ao enviar o email da cotacao.",
        "integration_rejected": "O servico externo recusou a operacao. Revise os dados e tente novamente.",
        "integration_temporarily_unavailable": "Nao conseguimos falar com o servico externo agora. Tente novamente em instantes.",
        "items_already_requested": "Um ou mais itens ja estao em uma cotacao ativa.",
        "items_required": "Selecione ao menos um item para cotar.",
        "not_found": "Registro nao encontrado.",
        "order_not_approvable": "Pedido nao pode ser aprovado no status atual.",
        "order_not_found": "Pedido nao encontrado.",
        "payload_invalid": "Dados enviados sao invalidos.",
        "persistence_failed": "Nao foi possivel salvar a cotacao. Nenhuma alteracao foi mantida.",
        "quotation_not_confirmable": "Cotacao ainda nao foi respondida com precos.",
        "quotation_not_deletable": "Somente cotacoes aguardando resposta podem ser removidas.",
        "quotation_not_found": "Cotacao nao encontrada.",
        "quotation_not_resendable": "Somente cotacoes aguardando resposta podem ser reenviadas.",
        "receipt_not_allowed": "Somente pedidos confirmados podem ter recebimento confirmado.",
        "send_in_progress": "Ja existe um envio em andamento. Aguarde.",
        "status_invalid": "Status informado e invalido para esta etapa.",
        "supplier_email_required": "Fornecedor sem email cadastrado.",
        "supplier_has_pending_quotation": "Este fornecedor ja possui uma cotacao aguardando resposta.",
        "tab_invalid": "Aba informada e invalida.",
        "token_required": "Informe o token de acesso do email.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
    },
}


QUOTATION_DRAFT: Dict[str, str] = {
    "subject": "Solicitacao de Cotacao - {date}",
    "greeting": "Prezado(a) {supplier_name},",
    "intro": "Solicitamos cotacao para os seguintes itens:",
    "closing": "Por favor, informe preco unitario, disponibilidade e prazo de entrega.",
    "signature": "Atenciosamente,\n{sender_name}",
}


def status_label(group: str, key: str, default: str | None = None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    if default is not None:
        return default
    return key


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None, **values: object) -> str:
    return _format(get_message("success", key, default), values)


def warning_message(key: str, default: str | None = None, **values: object) -> str:
    return _format(get_message("warning", key, default), values)


def notification_message(key: str, default: str | None = None, **values: object) -> str:
    return _format(get_message("notification", key, default), values)


def _format(template: str, values: Dict[str, object]) -> str:
    if not values:
        return template
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError):
        return template
