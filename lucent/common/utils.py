"""
命名工具函数
"""

import re


_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')


def snake_case(name: str) -> str:
    """CamelCase -> snake_case"""
    return _CAMEL_BOUNDARY.sub('_', name).lower()


def pluralize(word: str) -> str:
    """英文复数（仅覆盖常见规则）"""
    if re.search(r'[^aeiou]y$', word):
        return word[:-1] + 'ies'
    if re.search(r'(s|x|z|ch|sh)$', word):
        return word + 'es'
    return word + 's'


def singularize(word: str) -> str:
    """pluralize 的逆操作"""
    if word.endswith('ies'):
        return word[:-3] + 'y'
    if re.search(r'(s|x|z|ch|sh)es$', word):
        return word[:-2]
    if word.endswith('s') and not word.endswith('ss'):
        return word[:-1]
    return word


def canonical_scope_name(name: str) -> str:
    """
    查询作用域的规范名称

    去掉 ``scope_`` 前缀后转为蛇形：``scope_HasProfile``、``hasProfile``、
    ``has_profile`` 都得到 ``has_profile``。
    """
    if name.lower().startswith('scope_'):
        name = name[len('scope_'):]
    return snake_case(name)
